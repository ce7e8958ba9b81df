"""Best-effort parsing of incomplete JSON text.

A document that is still being transmitted is rarely valid JSON: strings are
unterminated, containers are left open, the last token may be cut in half.
This module repairs the tail of such a text and hands the result to the
standard :mod:`json` parser.

The repair is a single left-to-right scan. It keeps an explicit stack of open
scopes, an explicit lexical mode and the offset of the last *safe cut*, the
last point where the text could be closed off by appending the closing
brackets of the open scopes. When the text ends (or turns out to be malformed)
the scan either completes the token in progress, if that can be done without
guessing, or falls back to the safe cut.

Rules applied at the end of the text:

- an unterminated value string gets its closing quote, an incomplete escape
  sequence at its end is dropped;
- an unterminated key is dropped together with its comma;
- a number keeps its longest valid prefix (``12.`` becomes ``12``), a bare
  sign is dropped;
- a partial ``true``/``false``/``null`` is dropped;
- open scopes are closed innermost first, and a comma right before a closing
  bracket, written or synthesized, is removed.

Malformed input is handled as if the text ended at the offending character.
Nesting deeper than ``settings.max_depth`` counts as malformed.
Anything after a complete root value is ignored. Values are never invented.
"""

import json
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional

from config import logger, settings

WHITESPACE = " \t\n\r"
DIGITS = "0123456789"
ESCAPES = '"\\/bfnrt'
HEX_DIGITS = "0123456789abcdefABCDEF"
KEYWORDS = ("true", "false", "null")

# longest valid JSON number at the start of a token
NUMBER_PREFIX = re.compile(r"-?(?:0|[1-9][0-9]*)(?:\.[0-9]+)?(?:[eE][+-]?[0-9]+)?")
NUMBER_RUN = re.compile(r"[0-9+\-.eE]*")
LITERAL_RUN = re.compile(r"[a-z]*")
PLAIN_STRING_RUN = re.compile(r'[^"\\]*')


class RepairInvariantError(AssertionError):
    """The repair scan reached a state that no input should produce.

    Distinct from every ordinary outcome of :func:`parse`: incomplete or
    malformed text never raises, it yields a value or an unrecoverable
    result.
    """

    pass


@dataclass(frozen=True)
class ParseResult:
    """Outcome of a best-effort parse.

    Attributes:
        value (Any): The decoded JSON value, None when unrecoverable.
        recovered (bool): False only when the text held no salvageable
            structure.
    """

    value: Any = None
    recovered: bool = False

    @classmethod
    def of(cls, value: Any) -> "ParseResult":
        return cls(value=value, recovered=True)

    @classmethod
    def unrecoverable(cls) -> "ParseResult":
        return cls()

    def __bool__(self) -> bool:
        return self.recovered


class LexMode(IntEnum):
    """Where the scan currently sits.

    Attributes:
        BETWEEN: Between tokens.
        STRING: Inside a string literal, key or value.
        NUMBER: Inside a number literal.
        LITERAL: Inside ``true``, ``false`` or ``null``.
    """

    BETWEEN = 1
    STRING = 2
    NUMBER = 3
    LITERAL = 4


class Expect(IntEnum):
    """What the innermost open scope accepts next.

    Attributes:
        KEY: An object key, or the end of the scope.
        COLON: The colon after an object key.
        VALUE: A value, or for arrays the end of the scope.
        COMMA: A comma or the end of the scope.
    """

    KEY = 1
    COLON = 2
    VALUE = 3
    COMMA = 4


class Scope:
    """Marker for one open object or array.

    Args:
        opener (str): ``{`` or ``[``.

    Attributes:
        opener (str): The bracket that opened the scope.
        expect (Expect): Next accepted token.
        comma_at (int): Offset of the last comma read in this scope, -1 if none.
    """

    def __init__(self, opener: str) -> None:
        self.reset(opener)

    def reset(self, opener: str) -> None:
        self.opener = opener
        self.expect = Expect.KEY if opener == "{" else Expect.VALUE
        self.comma_at = -1

    @property
    def is_object(self) -> bool:
        return self.opener == "{"

    @property
    def closer(self) -> str:
        return "}" if self.opener == "{" else "]"


class ScopeStack:
    """Stack of open scopes.

    Scope markers live in an arena of slots addressed by ``depth``; popped
    slots are reused by later pushes.
    """

    def __init__(self) -> None:
        self._slots: list[Scope] = []
        self.depth = 0

    def push(self, opener: str) -> Scope:
        if self.depth == len(self._slots):
            self._slots.append(Scope(opener))
        else:
            self._slots[self.depth].reset(opener)
        self.depth += 1
        return self._slots[self.depth - 1]

    def pop(self) -> Scope:
        if self.depth == 0:
            raise RepairInvariantError("pop on an empty scope stack")
        self.depth -= 1
        return self._slots[self.depth]

    @property
    def top(self) -> Optional[Scope]:
        return self._slots[self.depth - 1] if self.depth else None

    def closers(self) -> str:
        """Closing brackets for every open scope, innermost first."""
        return "".join(self._slots[i].closer for i in range(self.depth - 1, -1, -1))


class RepairPlan:
    """Single-pass repair scan over one text.

    Attributes:
        text (str): The text being repaired.
        scopes (ScopeStack): Currently open scopes.
        mode (LexMode): Current lexical mode.
        safe (Optional[int]): Offset of the last safe cut, None before the
            first one.
        stop (Optional[int]): Offset of the first malformed character, if any.
    """

    def __init__(self, text: str, max_depth: Optional[int] = None) -> None:
        self.text = text
        self.max_depth = max_depth or settings.max_depth
        self.scopes = ScopeStack()
        self.mode = LexMode.BETWEEN
        self.safe: Optional[int] = None
        self.stop: Optional[int] = None
        self.done = False
        # token in progress
        self.token_start = -1
        self.in_key = False
        self.escape_start = -1
        self.hex_left = 0
        # offsets of trailing commas removed before a closing bracket
        self.dropped: list[int] = []

    def repair(self) -> Optional[str]:
        """Returns the repaired text, or None when nothing can be salvaged."""
        self._scan()
        return self._close(self.stop if self.stop is not None else len(self.text))

    def _scan(self) -> None:
        text = self.text
        length = len(text)
        i = 0
        while i < length and not self.done:
            if self.mode == LexMode.STRING:
                i = self._read_string(i)
            elif self.mode == LexMode.NUMBER:
                i = NUMBER_RUN.match(text, i).end()
                if i >= length:
                    break
                if not NUMBER_PREFIX.fullmatch(text, self.token_start, i):
                    self.stop = i
                    break
                self._value_done(i)
            elif self.mode == LexMode.LITERAL:
                i = LITERAL_RUN.match(text, i).end()
                token = text[self.token_start : i]
                if token in KEYWORDS:
                    self._value_done(i)
                elif i < length or not any(k.startswith(token) for k in KEYWORDS):
                    self.stop = i
                    break
            else:
                char = text[i]
                if char in WHITESPACE:
                    i += 1
                elif self._structural(char, i):
                    i += 1
                else:
                    self.stop = i
                    break

            if self.stop is not None:
                break

    def _structural(self, char: str, index: int) -> bool:
        """Handles one character between tokens, False if it is malformed."""
        scope = self.scopes.top
        expect = Expect.VALUE if scope is None else scope.expect

        if expect == Expect.VALUE:
            if char in "{[":
                if self.scopes.depth >= self.max_depth:
                    return False
                self._open(char, index)
            elif char == '"':
                self._start_token(LexMode.STRING, index, key=False)
            elif char == "-" or char in DIGITS:
                self._start_token(LexMode.NUMBER, index)
            elif char in "tfn":
                self._start_token(LexMode.LITERAL, index)
            elif char == "]" and scope is not None and not scope.is_object:
                self._end(scope, index)
            else:
                return False
            return True

        if expect == Expect.KEY:
            if char == '"':
                self._start_token(LexMode.STRING, index, key=True)
            elif char == "}":
                self._end(scope, index)
            else:
                return False
            return True

        if expect == Expect.COLON:
            if char != ":":
                return False
            scope.expect = Expect.VALUE
            return True

        if char == ",":
            scope.comma_at = index
            scope.expect = Expect.KEY if scope.is_object else Expect.VALUE
            return True

        if char == scope.closer:
            self._end(scope, index)
            return True

        return False

    def _open(self, opener: str, index: int) -> None:
        self.scopes.push(opener)
        self.safe = index + 1

    def _end(self, scope: Scope, index: int) -> None:
        if scope.expect != Expect.COMMA and scope.comma_at >= 0:
            self.dropped.append(scope.comma_at)
        self.scopes.pop()
        self._value_done(index + 1)

    def _start_token(self, mode: LexMode, index: int, key: bool = False) -> None:
        self.mode = mode
        self.token_start = index
        self.in_key = key
        self.escape_start = -1
        self.hex_left = 0

    def _value_done(self, end: int) -> None:
        self.mode = LexMode.BETWEEN
        self.safe = end
        scope = self.scopes.top
        if scope is None:
            self.done = True
        else:
            scope.expect = Expect.COMMA

    def _read_string(self, index: int) -> int:
        """Consumes string characters from ``index``.

        Returns:
            int: Offset of the first character after what was consumed.
        """
        text = self.text
        length = len(text)
        i = index
        while i < length:
            if self.hex_left:
                if text[i] not in HEX_DIGITS:
                    self.stop = i
                    return i
                self.hex_left -= 1
                if not self.hex_left:
                    self.escape_start = -1
                i += 1
            elif self.escape_start >= 0:
                char = text[i]
                if char == "u":
                    self.hex_left = 4
                elif char in ESCAPES:
                    self.escape_start = -1
                else:
                    self.stop = i
                    return i
                i += 1
            else:
                i = PLAIN_STRING_RUN.match(text, i).end()
                if i >= length:
                    break
                if text[i] == "\\":
                    self.escape_start = i
                    i += 1
                    continue
                # closing quote
                if self.in_key:
                    self.mode = LexMode.BETWEEN
                    self.scopes.top.expect = Expect.COLON
                else:
                    self._value_done(i + 1)
                return i + 1
        return i

    def _close(self, end: int) -> Optional[str]:
        """Closes off the text at ``end`` according to the current mode."""
        if self.mode == LexMode.STRING and not self.in_key:
            cut = self.escape_start if self.escape_start >= 0 else end
            return self._emit(cut, '"')

        if self.mode == LexMode.NUMBER:
            match = NUMBER_PREFIX.match(self.text, self.token_start, end)
            if match:
                return self._emit(match.end())

        if self.mode == LexMode.LITERAL and self.text[self.token_start : end] in KEYWORDS:
            return self._emit(end)

        # partial key, partial literal, bare sign, or between tokens
        if self.safe is None:
            return None
        return self._emit(self.safe)

    def _emit(self, cut: int, tail: str = "") -> str:
        pieces = []
        start = 0
        for index in self.dropped:
            if index >= cut:
                break
            pieces.append(self.text[start:index])
            start = index + 1
        pieces.append(self.text[start:cut])
        pieces.append(tail)
        pieces.append(self.scopes.closers())
        return "".join(pieces)


def repair(text: str) -> Optional[str]:
    """Repairs a possibly incomplete JSON text.

    Args:
        text: Any text, typically a growing prefix of a JSON document.

    Returns:
        Optional[str]: Text accepted by the standard JSON parser, or None when
            the text is empty, starts with a character that cannot begin a
            JSON value, or holds nothing confirmed yet (``tru``, ``-``).
    """
    plan = RepairPlan(text)
    repaired = plan.repair()
    if plan.stop is not None:
        logger.debug({"malformed_at": plan.stop, "length": len(text)})
    return repaired


def parse(text: str) -> ParseResult:
    """Parses a possibly incomplete JSON text.

    Never raises for incomplete or malformed input.

    Args:
        text: Any text, typically a growing prefix of a JSON document.

    Returns:
        ParseResult: The best-effort value, or an unrecoverable result.

    Raises:
        RepairInvariantError: If a repaired text is rejected by the standard
            parser, which indicates a bug in the repair scan.
    """
    repaired = repair(text)
    if repaired is None:
        logger.debug({"unrecoverable": len(text)})
        return ParseResult.unrecoverable()
    return ParseResult.of(_loads(repaired))


def _loads(repaired: str) -> Any:
    try:
        # strict=False accepts raw control characters inside strings
        return json.loads(repaired, strict=False)
    except json.JSONDecodeError as e:
        logger.error({"repaired": repaired, "error": str(e)})
        raise RepairInvariantError(f"repaired text is not valid JSON: {e}") from e


class BestEffortJsonParser:
    """Best-effort parser that remembers its last repair.

    Consecutive snapshots of a stream often repeat (an empty chunk, a chunk of
    whitespace); the repaired text of the previous input is reused then. The
    memo only maps an input to its repaired text, results are always decoded
    afresh so no two results share mutable containers.
    """

    def __init__(self):
        self._last_text: Optional[str] = None
        self._last_repaired: Optional[str] = None

    def parse(self, text: str) -> ParseResult:
        if text != self._last_text:
            self._last_text = text
            self._last_repaired = repair(text)

        if self._last_repaired is None:
            return ParseResult.unrecoverable()
        return ParseResult.of(_loads(self._last_repaired))
