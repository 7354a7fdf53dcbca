from __future__ import annotations

from dataclasses import dataclass
from typing import List

from schemaguard.core.errors import PolicyParseError

IDENT = "IDENT"
STRING = "STRING"
NUMBER = "NUMBER"
SYMBOL = "SYMBOL"
EOF = "EOF"

# Longest match first
_SYMBOLS = (
    "@@", "==", "!=", "<=", ">=", "&&", "||",
    "@", "{", "}", "(", ")", "[", "]", ",", ":", ".", "?", "!", "^", "<", ">", "-",
)

_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", "'": "'", '"': '"'}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    line: int
    column: int

    def is_symbol(self, value: str) -> bool:
        return self.kind == SYMBOL and self.value == value

    def is_keyword(self, value: str) -> bool:
        return self.kind == IDENT and self.value == value


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    line = 1
    line_start = 0
    n = len(text)

    while i < n:
        ch = text[i]
        col = i - line_start + 1

        if ch == "\n":
            i += 1
            line += 1
            line_start = i
            continue
        if ch.isspace():
            i += 1
            continue

        if text.startswith("//", i):
            while i < n and text[i] != "\n":
                i += 1
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end < 0:
                raise PolicyParseError("Unterminated block comment", line=line, column=col)
            line += text.count("\n", i, end)
            nl = text.rfind("\n", i, end)
            if nl >= 0:
                line_start = nl + 1
            i = end + 2
            continue

        if ch.isalpha() or ch == "_":
            start = i
            while i < n and (text[i].isalnum() or text[i] == "_"):
                i += 1
            tokens.append(Token(IDENT, text[start:i], line, col))
            continue

        if ch.isdigit():
            start = i
            while i < n and text[i].isdigit():
                i += 1
            if i + 1 < n and text[i] == "." and text[i + 1].isdigit():
                i += 1
                while i < n and text[i].isdigit():
                    i += 1
            tokens.append(Token(NUMBER, text[start:i], line, col))
            continue

        if ch in ("'", '"'):
            quote = ch
            i += 1
            buf: List[str] = []
            while True:
                if i >= n or text[i] == "\n":
                    raise PolicyParseError("Unterminated string literal", line=line, column=col)
                c = text[i]
                if c == "\\" and i + 1 < n:
                    buf.append(_ESCAPES.get(text[i + 1], text[i + 1]))
                    i += 2
                    continue
                if c == quote:
                    i += 1
                    break
                buf.append(c)
                i += 1
            tokens.append(Token(STRING, "".join(buf), line, col))
            continue

        for sym in _SYMBOLS:
            if text.startswith(sym, i):
                tokens.append(Token(SYMBOL, sym, line, col))
                i += len(sym)
                break
        else:
            raise PolicyParseError(f"Unexpected character {ch!r}", line=line, column=col)

    tokens.append(Token(EOF, "", line, i - line_start + 1))
    return tokens
