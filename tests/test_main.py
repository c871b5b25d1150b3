"""Tests for the pygame front end helpers that don't need a window."""

import pytest
import pygame

import main
from Chip8 import LoadError


class TestLoadfile:
    def test_reads_bytes(self, tmp_path):
        rom = tmp_path / "prog.ch8"
        rom.write_bytes(bytes([0x60, 0x01, 0x12, 0x02]))
        assert main.loadfile(str(rom)) == bytes([0x60, 0x01, 0x12, 0x02])

    def test_missing_file(self, tmp_path):
        with pytest.raises(LoadError):
            main.loadfile(str(tmp_path / "nope.ch8"))

    def test_empty_file_rejected_by_interpreter(self, tmp_path):
        rom = tmp_path / "empty.ch8"
        rom.write_bytes(b"")
        assert main.main([str(rom)]) == 1


class TestArgs:
    def test_defaults(self):
        args = main.parse_args(["game.ch8"])
        assert args.filename == "game.ch8"
        assert args.seed is None
        assert not args.strict_stack
        assert not args.verbose

    def test_flags(self):
        args = main.parse_args(["--seed", "7", "--strict-stack", "-v", "x.ch8"])
        assert args.seed == 7
        assert args.strict_stack
        assert args.verbose


class TestEvents:
    def test_key_down_and_up(self):
        held = set()
        assert main.handle_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_q), held)
        assert held == {0x4}
        main.handle_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_v), held)
        main.handle_event(pygame.event.Event(pygame.KEYUP, key=pygame.K_q), held)
        assert held == {0xF}

    def test_unmapped_key_ignored(self):
        held = set()
        main.handle_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_p), held)
        assert held == set()

    def test_quit(self):
        assert not main.handle_event(pygame.event.Event(pygame.QUIT), set())

    def test_keymap_covers_keypad(self):
        assert set(main.KEYMAP.values()) == set(range(16))
