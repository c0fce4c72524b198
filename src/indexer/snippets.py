"""Conversion of parsed structure into embeddable snippets."""

from typing import Iterable, List

from .models import CodeSnippet, ParsedFile


def extract_snippets(parsed_files: Iterable[ParsedFile]) -> List[CodeSnippet]:
    """Emit one snippet per function, per method, and per class without methods.

    Method snippets are named ``Class.method``. Empty bodies fall back to a
    signature-like declaration so every snippet has some code.
    """
    snippets: List[CodeSnippet] = []

    for parsed in parsed_files:
        for fn in parsed.functions:
            snippets.append(
                CodeSnippet(
                    name=fn.name,
                    code=fn.body or f"function {fn.name}{fn.params}",
                    file=parsed.file_path,
                    start_line=fn.start_line,
                    end_line=fn.end_line,
                )
            )

        for cls in parsed.classes:
            for method in cls.methods:
                snippets.append(
                    CodeSnippet(
                        name=f"{cls.name}.{method.name}",
                        code=method.body or f"{method.name}{method.params}",
                        file=parsed.file_path,
                        start_line=method.start_line,
                        end_line=method.end_line,
                    )
                )

            if not cls.methods:
                declaration = f"class {cls.name}"
                if cls.extends:
                    declaration += f" extends {cls.extends}"
                snippets.append(
                    CodeSnippet(
                        name=cls.name,
                        code=declaration,
                        file=parsed.file_path,
                        start_line=cls.start_line,
                        end_line=cls.end_line,
                    )
                )

    return snippets
