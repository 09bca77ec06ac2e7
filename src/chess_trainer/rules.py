"""Chess rules collaborator: the protocol the evaluator talks to, backed by python-chess."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import chess

PROMOTION_PIECES = {
    "q": chess.QUEEN,
    "r": chess.ROOK,
    "b": chess.BISHOP,
    "n": chess.KNIGHT,
}


@dataclass(frozen=True)
class Piece:
    type: str                   # p, n, b, r, q, k
    color: str                  # w or b


@dataclass(frozen=True)
class MoveRecord:
    from_square: str
    to_square: str
    promotion: str | None
    uci: str
    san: str
    piece: str
    color: str
    captured: str | None = None


class RulesEngine(Protocol):
    def load(self, fen: str) -> None: ...

    def move(self, from_sq: str, to_sq: str, promotion: str | None = "q") -> MoveRecord | None: ...

    def fen(self) -> str: ...

    def turn(self) -> str: ...

    def is_game_over(self) -> bool: ...

    def undo(self) -> None: ...

    def piece_at(self, square: str) -> Piece | None: ...


def _color_letter(color: chess.Color) -> str:
    return "w" if color == chess.WHITE else "b"


class ChessRules:
    """python-chess implementation of RulesEngine."""

    def __init__(self, fen: str = chess.STARTING_FEN):
        self._board = chess.Board(fen)

    def load(self, fen: str) -> None:
        try:
            board = chess.Board(fen)
        except ValueError as e:
            raise ValueError(f"Invalid FEN: {fen}") from e
        if not board.is_valid():
            raise ValueError(f"Illegal position: {fen}")
        self._board = board

    def _build_move(self, from_sq: str, to_sq: str, promotion: str | None) -> chess.Move | None:
        try:
            origin = chess.parse_square(from_sq)
            target = chess.parse_square(to_sq)
        except ValueError:
            return None

        # Promotion letter only applies to a pawn reaching the last rank.
        promo_piece = None
        piece = self._board.piece_at(origin)
        if piece is not None and piece.piece_type == chess.PAWN:
            last_rank = 7 if piece.color == chess.WHITE else 0
            if chess.square_rank(target) == last_rank:
                promo_piece = PROMOTION_PIECES.get((promotion or "q").lower()[:1], chess.QUEEN)
        return chess.Move(origin, target, promotion=promo_piece)

    def move(self, from_sq: str, to_sq: str, promotion: str | None = "q") -> MoveRecord | None:
        move = self._build_move(from_sq, to_sq, promotion)
        if move is None or move not in self._board.legal_moves:
            return None

        piece = self._board.piece_at(move.from_square)
        if self._board.is_en_passant(move):
            captured = "p"
        else:
            target = self._board.piece_at(move.to_square)
            captured = target.symbol().lower() if target else None
        san = self._board.san(move)
        self._board.push(move)
        return MoveRecord(
            from_square=from_sq,
            to_square=to_sq,
            promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
            uci=move.uci(),
            san=san,
            piece=piece.symbol().lower(),
            color=_color_letter(piece.color),
            captured=captured,
        )

    def fen(self) -> str:
        return self._board.fen()

    def turn(self) -> str:
        return _color_letter(self._board.turn)

    def is_game_over(self) -> bool:
        return self._board.is_game_over()

    def undo(self) -> None:
        if self._board.move_stack:
            self._board.pop()

    def piece_at(self, square: str) -> Piece | None:
        try:
            piece = self._board.piece_at(chess.parse_square(square))
        except ValueError:
            return None
        if piece is None:
            return None
        return Piece(type=piece.symbol().lower(), color=_color_letter(piece.color))
