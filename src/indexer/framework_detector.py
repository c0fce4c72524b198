"""Framework detection for cloned repositories.

Scores each known stack by the presence of indicator files, substrings in
build manifests, and source extensions, and returns detections ordered by
confidence. Each detection carries the directories to skip when indexing.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class FrameworkIndicator:
    """Scoring rules for one framework."""

    framework: str
    indicator_files: List[str]
    exclude_patterns: List[str]
    weight: float = 0.2
    indicator_extensions: List[str] = field(default_factory=list)
    extension_weight: Optional[float] = None
    # (file, substring, weight)
    content_checks: List[Tuple[str, str, float]] = field(default_factory=list)


@dataclass
class FrameworkDetection:
    framework: str
    confidence: float
    file_patterns: List[str]
    exclude_patterns: List[str]


FRAMEWORK_INDICATORS: List[FrameworkIndicator] = [
    FrameworkIndicator(
        framework="react",
        indicator_files=["package.json", "tsconfig.json"],
        weight=0.15,
        content_checks=[
            ("package.json", '"react"', 0.3),
            ("package.json", '"react-dom"', 0.2),
        ],
        exclude_patterns=["node_modules", "build", "dist"],
    ),
    FrameworkIndicator(
        framework="typescript",
        indicator_files=["tsconfig.json"],
        indicator_extensions=[".ts", ".tsx"],
        weight=0.3,
        content_checks=[("package.json", '"typescript"', 0.2)],
        exclude_patterns=["node_modules", "build", "dist"],
    ),
    FrameworkIndicator(
        framework="java",
        indicator_files=["pom.xml", "build.gradle", "build.gradle.kts"],
        indicator_extensions=[".java"],
        weight=0.2,
        content_checks=[
            ("pom.xml", "spring", 0.2),
            ("build.gradle", "spring", 0.2),
            ("build.gradle.kts", "spring", 0.2),
        ],
        exclude_patterns=["target", "build", ".gradle", ".mvn"],
    ),
    FrameworkIndicator(
        framework="flutter",
        indicator_files=["pubspec.yaml"],
        weight=0.25,
        content_checks=[
            ("pubspec.yaml", "flutter:", 0.4),
            ("pubspec.yaml", "flutter_test:", 0.1),
        ],
        exclude_patterns=[".dart_tool", "build", ".flutter-plugins"],
    ),
    FrameworkIndicator(
        framework="ftl",
        indicator_files=[],
        indicator_extensions=[".ftl"],
        weight=0.2,
        extension_weight=0.4,
        exclude_patterns=["build", "target", "node_modules"],
    ),
]

# Frameworks accepted by the indexing endpoints
SUPPORTED_FRAMEWORKS: List[Dict] = [
    {"id": "react", "name": "React", "languages": ["typescript", "javascript"]},
    {"id": "typescript", "name": "TypeScript", "languages": ["typescript"]},
    {"id": "java", "name": "Java", "languages": ["java"]},
    {"id": "spring-boot", "name": "Spring Boot", "languages": ["java"]},
    {"id": "flutter", "name": "Flutter", "languages": ["dart"]},
    {"id": "ftl", "name": "FTL (FreeMarker)", "languages": ["ftl"]},
]
FRAMEWORK_IDS = [f["id"] for f in SUPPORTED_FRAMEWORKS]

# A generic framework loses confidence when one of its specific variants matched
GENERIC_PAIRS = {"typescript": ["react"]}

SCAN_EXCLUDES = frozenset({
    "node_modules", ".git", ".svn", ".hg",
    ".idea", ".vscode", ".next", ".dart_tool",
    "dist", "build", "target",
})

MAX_SCANNED_FILES = 5000


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def has_file_with_extension(
    root: Path,
    extensions: List[str],
    exclude_patterns: List[str],
    max_files: int = MAX_SCANNED_FILES,
) -> bool:
    """Check whether any file under root has one of the extensions.

    Stops looking after ``max_files`` files have been inspected.
    """
    wanted = {ext.lower() for ext in extensions}
    checked = 0
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            entries = list(os.scandir(current))
        except OSError:
            continue
        for entry in entries:
            if checked >= max_files:
                return False
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name not in SCAN_EXCLUDES and entry.name not in exclude_patterns:
                        stack.append(Path(entry.path))
                elif entry.is_file():
                    checked += 1
                    if Path(entry.name).suffix.lower() in wanted:
                        return True
            except OSError:
                continue
    return False


def detect_frameworks(repo_dir: str) -> List[FrameworkDetection]:
    """Detect frameworks used in a repository checkout.

    Args:
        repo_dir: Repository root

    Returns:
        Detections with positive confidence, highest confidence first
    """
    root = Path(repo_dir)
    detections: List[FrameworkDetection] = []

    for indicator in FRAMEWORK_INDICATORS:
        confidence = 0.0
        matched: List[str] = []

        for name in indicator.indicator_files:
            if (root / name).exists():
                confidence += indicator.weight
                matched.append(name)

        for name, substring, weight in indicator.content_checks:
            content = _read_text(root / name)
            if content and substring.lower() in content.lower():
                confidence += weight
                if name not in matched:
                    matched.append(name)

        if indicator.indicator_extensions and has_file_with_extension(
            root, indicator.indicator_extensions, indicator.exclude_patterns
        ):
            if indicator.extension_weight is not None:
                confidence += indicator.extension_weight
            else:
                confidence += indicator.weight
            for ext in indicator.indicator_extensions:
                label = f"*{ext}"
                if label not in matched:
                    matched.append(label)

        if confidence > 0:
            detections.append(
                FrameworkDetection(
                    framework=indicator.framework,
                    confidence=round(min(confidence, 1.0), 2),
                    file_patterns=matched,
                    exclude_patterns=list(indicator.exclude_patterns),
                )
            )

    for generic, specifics in GENERIC_PAIRS.items():
        if any(d.framework in specifics and d.confidence > 0.3 for d in detections):
            for detection in detections:
                if detection.framework == generic:
                    detection.confidence = round(max(detection.confidence - 0.3, 0.0), 2)

    result = sorted((d for d in detections if d.confidence > 0), key=lambda d: d.confidence, reverse=True)
    logger.info(f"Framework detection complete: {[f'{d.framework}({d.confidence})' for d in result]}")
    return result


def detect_primary_framework(repo_dir: str, threshold: float = 0.2) -> str:
    """Return the most likely framework, or ``unknown`` below the threshold."""
    detections = detect_frameworks(repo_dir)
    if detections and detections[0].confidence >= threshold:
        return detections[0].framework
    return "unknown"


def normalize_framework(framework: Optional[str]) -> Optional[str]:
    """Map a user-supplied framework name onto a supported id, or None."""
    if not framework:
        return None
    candidate = framework.strip().lower()
    return candidate if candidate in FRAMEWORK_IDS else None
