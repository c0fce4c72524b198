"""FreeMarker template parser.

Templates have no real structure to extract, so macros become functions and a
template without macros is indexed as one unit.
"""

import os
import re
from typing import List

from ..models import FunctionInfo, ParsedFile
from .base import CodeParser

MACRO_RE = re.compile(r"<#macro\s+([A-Za-z0-9_]+)([^>]*)>")
MACRO_END = "</#macro>"


def _find_macro_end(lines: List[str], start: int) -> int:
    for i in range(start, len(lines)):
        if MACRO_END in lines[i]:
            return i
    return len(lines) - 1


class FtlParser(CodeParser):
    language = "ftl"
    file_extensions = [".ftl"]

    def parse_with_regex(self, code: str, file_path: str) -> ParsedFile:
        lines = re.split(r"\r?\n", code)
        functions: List[FunctionInfo] = []

        i = 0
        while i < len(lines):
            match = MACRO_RE.search(lines[i])
            if not match:
                i += 1
                continue
            params = match.group(2).strip()
            close = _find_macro_end(lines, i)
            functions.append(
                FunctionInfo(
                    name=f"macro:{match.group(1)}",
                    params=params or "()",
                    return_type="template",
                    body="\n".join(lines[i:close + 1]),
                    start_line=i + 1,
                    end_line=close + 1,
                )
            )
            i = close + 1

        if not functions:
            functions.append(
                FunctionInfo(
                    name=os.path.basename(file_path) or "template",
                    params="()",
                    return_type="template",
                    body=code,
                    start_line=1,
                    end_line=max(len(lines), 1),
                )
            )

        return ParsedFile(file_path=file_path, language=self.language, functions=functions)
