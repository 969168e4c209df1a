"""
unified diff 文本 -> `Diff` 模型。

支持：
- `diff --git` 头 / 纯 `---` + `+++` 头
- new file / deleted file / rename from/to 元信息
- `\\ No newline at end of file`、Binary 文件（无 hunk）

hunk 正文的结束由 header 里的行数决定（而不是靠前缀猜），
所以 hunk 内部以 `---` 开头的删除行不会被误判成新文件头。
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field

from codereview.review.errors import MalformedDiffError
from codereview.review.models import ChangeKind
from codereview.review.models import Diff
from codereview.review.models import FileChange
from codereview.review.models import Hunk

logger = logging.getLogger(__name__)

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_DEV_NULL = "/dev/null"


@dataclass
class _FileBuilder:
    path: str | None = None
    old_path: str | None = None
    change_kind: ChangeKind = ChangeKind.MODIFIED
    hunks: list[Hunk] = field(default_factory=list)

    def build(self) -> FileChange:
        path = self.path or self.old_path
        if not path:
            raise MalformedDiffError("File change without a path")
        old_path = self.old_path if self.old_path != path else None
        if self.change_kind is ChangeKind.MODIFIED and old_path is not None:
            self.change_kind = ChangeKind.RENAMED
        return FileChange(path=path, old_path=old_path, change_kind=self.change_kind, hunks=tuple(self.hunks))


def parse_unified_diff(text: str) -> Diff:
    """
    解析 unified diff。

    - **输入**：任意 unified-diff 风格文本（git diff / diff -u）
    - **输出**：`Diff`（文件、hunk 均保持原始顺序）
    - **失败**：hunk 头非法、正文行数与 header 不符、hunk 范围重叠/乱序 -> `MalformedDiffError`
    """
    lines = text.splitlines()
    files: list[FileChange] = []
    current: _FileBuilder | None = None
    i = 0

    while i < len(lines):
        line = lines[i]

        if line.startswith("diff --git "):
            if current is not None:
                files.append(current.build())
            current = _FileBuilder()
            old_path, new_path = _parse_git_header(line)
            current.old_path, current.path = old_path, new_path
            i += 1
            continue

        if line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ "):
            # 没有 `diff --git` 头的纯 unified diff：`---` 开启一个新文件
            if current is None or current.hunks:
                if current is not None:
                    files.append(current.build())
                current = _FileBuilder()
            old_path = _strip_prefix(line[4:], "a/")
            new_path = _strip_prefix(lines[i + 1][4:], "b/")
            if old_path == _DEV_NULL:
                current.change_kind = ChangeKind.ADDED
                old_path = None
            if new_path == _DEV_NULL:
                current.change_kind = ChangeKind.DELETED
                new_path = None
            current.old_path = old_path if old_path is not None else current.old_path
            current.path = new_path if new_path is not None else current.path
            if new_path is None:
                current.path = current.old_path
            i += 2
            continue

        if line.startswith("@@"):
            if current is None:
                raise MalformedDiffError(f"Hunk outside of a file header: {line}")
            hunk, i = _parse_hunk(lines=lines, start=i)
            current.hunks.append(hunk)
            continue

        if current is not None:
            _apply_metadata(builder=current, line=line)
        i += 1

    if current is not None:
        files.append(current.build())

    if not files and text.strip():
        raise MalformedDiffError("No file changes found in diff input")

    for f in files:
        _validate_hunk_order(f)

    diff = Diff(files=tuple(files))
    logger.info(f"Parsed diff: files={diff.total_files_changed}, lines_changed={diff.total_lines_changed}")
    return diff


def iter_added_lines(hunk: Hunk) -> Iterator[tuple[int, str]]:
    """遍历 hunk 里新增的行，返回 (新文件行号, 去掉 `+` 的内容)。"""
    new_line = hunk.new_start
    for line in hunk.lines:
        if line.startswith("+"):
            yield new_line, line[1:]
            new_line += 1
        elif line.startswith(" ") or line == "":
            new_line += 1


def render_hunk(hunk: Hunk) -> str:
    return "\n".join([hunk.header, *hunk.lines])


def _parse_git_header(line: str) -> tuple[str | None, str | None]:
    # diff --git a/x b/y
    rest = line[len("diff --git ") :]
    if " b/" in rest:
        old_raw, new_raw = rest.split(" b/", 1)
        return _strip_prefix(old_raw, "a/"), new_raw
    parts = rest.split(" ")
    if len(parts) != 2:
        raise MalformedDiffError(f"Invalid diff --git header: {line}")
    return _strip_prefix(parts[0], "a/"), _strip_prefix(parts[1], "b/")


def _strip_prefix(raw: str, prefix: str) -> str:
    # `--- a/x.py\t2024-01-01 ...`：去掉时间戳
    value = raw.split("\t", 1)[0].strip()
    if value.startswith(prefix):
        return value[len(prefix) :]
    return value


def _apply_metadata(builder: _FileBuilder, line: str) -> None:
    if line.startswith("new file mode"):
        builder.change_kind = ChangeKind.ADDED
    elif line.startswith("deleted file mode"):
        builder.change_kind = ChangeKind.DELETED
    elif line.startswith("rename from "):
        builder.old_path = line[len("rename from ") :].strip()
        builder.change_kind = ChangeKind.RENAMED
    elif line.startswith("rename to "):
        builder.path = line[len("rename to ") :].strip()
        builder.change_kind = ChangeKind.RENAMED


def _parse_hunk(lines: list[str], start: int) -> tuple[Hunk, int]:
    header = lines[start]
    match = _HUNK_HEADER.match(header)
    if match is None:
        raise MalformedDiffError(f"Invalid diff hunk header: {header}")
    old_start = int(match.group(1))
    old_count = int(match.group(2)) if match.group(2) is not None else 1
    new_start = int(match.group(3))
    new_count = int(match.group(4)) if match.group(4) is not None else 1

    old_left, new_left = old_count, new_count
    body: list[str] = []
    changed = 0
    i = start + 1
    while i < len(lines) and (old_left > 0 or new_left > 0):
        line = lines[i]
        if line.startswith("\\"):
            body.append(line)
        elif line.startswith("+"):
            new_left -= 1
            changed += 1
            body.append(line)
        elif line.startswith("-"):
            old_left -= 1
            changed += 1
            body.append(line)
        elif line.startswith(" ") or line == "":
            old_left -= 1
            new_left -= 1
            body.append(line if line else " ")
        else:
            raise MalformedDiffError(f"Unexpected line inside hunk {header!r}: {line!r}")
        i += 1

    if old_left != 0 or new_left != 0:
        raise MalformedDiffError(f"Hunk body does not match header counts: {header}")

    # 紧跟在最后一行之后的 `\ No newline at end of file`
    while i < len(lines) and lines[i].startswith("\\"):
        body.append(lines[i])
        i += 1

    hunk = Hunk(
        old_start=old_start,
        old_count=old_count,
        new_start=new_start,
        new_count=new_count,
        line_count=changed,
        lines=tuple(body),
    )
    return hunk, i


def _validate_hunk_order(file_change: FileChange) -> None:
    previous: Hunk | None = None
    for hunk in file_change.hunks:
        if previous is not None:
            if hunk.old_start < previous.old_start + previous.old_count:
                raise MalformedDiffError(f"Overlapping or unordered hunks in {file_change.path}: {hunk.header}")
            if hunk.new_start < previous.new_start + previous.new_count:
                raise MalformedDiffError(f"Overlapping or unordered hunks in {file_change.path}: {hunk.header}")
        previous = hunk


def resolve_diff_path(path: str, known_paths: set[str]) -> str | None:
    """
    把工具/模型报告的路径对齐到 diff 里的文件路径。

    - 原样命中优先（仓库里真的有 `a/`、`b/` 目录时不会被改写）
    - 否则依次尝试去掉 `./`、`a/`、`b/` 前缀
    - 都对不上 -> None，由调用方决定丢弃并记录
    """
    candidate = path.strip().replace("\\", "/")
    if candidate in known_paths:
        return candidate
    while candidate.startswith("./"):
        candidate = candidate[2:]
    if candidate in known_paths:
        return candidate
    for prefix in ("a/", "b/"):
        stripped = candidate.removeprefix(prefix)
        if stripped != candidate and stripped in known_paths:
            return stripped
    return None
