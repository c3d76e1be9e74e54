import random

import pytest

from turnstream.services.boards import GravityBoard, GridBoard, WordPuzzle, parse_position


def test_gravity_pieces_fall_to_bottom():
    b = GravityBoard()
    assert b.place(3, "R") == (3, 5)
    assert b.place(3, "Y") == (3, 4)
    assert b.get(3, 5) == "R"
    assert b[(3, 4)] == "Y"


def test_gravity_column_fills_up():
    b = GravityBoard()
    for i in range(b.H):
        b.place(0, "R" if i % 2 else "Y")
    assert b.target(0) is None
    assert 0 not in b.open_positions()
    with pytest.raises(ValueError):
        b.place(0, "R")


def test_gravity_four_in_a_row_directions():
    horiz = GravityBoard()
    for x in range(4):
        horiz.place(x, "R")
    assert horiz.winner() == "R"

    vert = GravityBoard()
    for _ in range(4):
        vert.place(6, "Y")
    assert vert.winner() == "Y"

    three = GravityBoard()
    for x in range(3):
        three.place(x, "R")
    assert three.winner() is None


def test_gravity_diagonal():
    b = GravityBoard.from_rows([
        [None] * 7,
        [None] * 7,
        [None, None, None, "R", None, None, None],
        [None, None, "R", "Y", None, None, None],
        [None, "R", "Y", "Y", None, None, None],
        ["R", "Y", "Y", "R", None, None, None],
    ])
    assert b.winner() == "R"
    assert b.wins_at((3, 2))


def test_grid_positions_and_win():
    b = GridBoard()
    assert b.place(4, "X") == (1, 1)
    assert b.target(4) is None
    for p in (0, 8):
        b.place(p, "X")
    assert b.winner() == "X"


def test_grid_full_without_winner():
    b = GridBoard.from_rows([
        ["X", "O", "X"],
        ["X", "O", "O"],
        ["O", "X", "X"],
    ])
    assert b.is_full()
    assert b.winner() is None


def test_copy_is_independent():
    b = GridBoard()
    b.place(0, "X")
    c = b.copy()
    c.place(1, "O")
    assert b.get(1, 0) is None
    assert c.snapshot() != b.snapshot()


def test_undo_restores_cell():
    b = GravityBoard()
    cell = b.place(2, "R")
    b.undo(cell)
    assert b.get(2, 5) is None
    assert b.target(2) == (2, 5)


def test_parse_position():
    assert parse_position("3", range(7)) == 3
    assert parse_position(" 6 ", range(7)) == 6
    for bad in (None, "x", "7", "-1", ""):
        with pytest.raises(ValueError):
            parse_position(bad, range(7))


def test_word_puzzle():
    p = WordPuzzle("cab", max_wrong=2)
    assert p.masked() == "_ _ _"
    assert p.guess("A")
    assert p.masked() == "_ A _"
    assert not p.guess("Z")
    assert p.already_guessed("Z") and p.already_guessed("A")
    assert not p.is_lost()
    p.guess("C")
    p.guess("B")
    assert p.is_solved()


def test_word_puzzle_loss_and_letters():
    p = WordPuzzle("DOG", max_wrong=2)
    p.guess("X")
    p.guess("Y")
    assert p.is_lost()
    assert WordPuzzle.parse_letter(" q ") == "Q"
    for bad in ("", "ab", "1", None):
        with pytest.raises(ValueError):
            WordPuzzle.parse_letter(bad)


def test_random_word_is_uppercase():
    p = WordPuzzle.random(random.Random(1))
    assert p.word and p.word == p.word.upper()
