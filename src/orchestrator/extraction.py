"""Turn markdown produced by the role agents into typed results.

Parsing is a single line scan per document (``MarkdownDocument``) that indexes
headings and fenced code blocks; sections are looked up by fuzzy,
case-insensitive matching against a list of heading aliases. Headings are
understood in English and Korean.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from orchestrator.models import (
    AffectedFile,
    ChangeKind,
    Impact,
    PlanPhase,
    PlanResult,
    PlanTask,
    ReviewDecision,
    ReviewIssue,
    ReviewResult,
    ReviewSummary,
    Risk,
    SecurityCheck,
    SecurityVerdict,
    Verdict,
)

HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
FENCE_OPEN_PATTERN = re.compile(r"^\s*(```+|~~~+)\s*([\w+#.-]*)")
FILE_LABEL_PATTERN = re.compile(
    r"^(?:file[:\s]+|파일[:\s]+)?`?([A-Za-z0-9_./\\-]+\.[A-Za-z0-9]+)`?$", re.IGNORECASE
)
BACKTICK_PATH_PATTERN = re.compile(r"`([A-Za-z0-9_./-]+\.[A-Za-z0-9]+)`")
LIST_ITEM_PATTERN = re.compile(r"^(?:[-*+]|\d+[.)])\s+(.+)$")
TABLE_SEPARATOR_PATTERN = re.compile(r"^\|?\s*:?-{3,}")

PLAN_TITLE_PATTERN = re.compile(r"^(?:plan|작업\s*계획)[:\s]+(.+)$", re.IGNORECASE)
IMPLEMENTATION_TITLE_PATTERN = re.compile(
    r"^(?:implementation\s+complete|구현\s*완료)[:\s]+(.+)$", re.IGNORECASE
)
PHASE_PATTERN = re.compile(r"^(\d+)\.\s+\*\*(.+?)\*\*[:\s]*(.*)$")
TASK_PATTERN = re.compile(r"^[-*]\s+(?:\[[ xX]\]\s+)?(.+)$")
RISK_PATTERN = re.compile(
    r"^[-*]\s+\*\*(high|medium|low|높음|중간|보통|낮음)\*\*[:\s]+"
    r"(.+?)(?:\s*(?:→|->)\s*(.+))?$",
    re.IGNORECASE,
)
SUMMARY_LINE_PATTERN = re.compile(r"^[-*]\s+`([^`]+)`[:\s-]+(.+)$")
AFFECTED_LIST_PATTERN = re.compile(r"^`([^`]+)`\s*(?:\(([^)]+)\))?[:\s-]*(.*)$")
SCORE_PATTERN = re.compile(r"(?:점수|score)[*:\s]+(\d+)", re.IGNORECASE)
ISSUE_PATTERN = re.compile(r"^`?([^:`]+?)`?:(\d+)\s*-\s*(.+)$")

CHANGE_CONTEXT_WINDOW = 100
CREATE_KEYWORDS = ("new file", "create", "새 파일", "생성")
DELETE_KEYWORDS = ("delete", "삭제", "제거")
EMPTY_MARKERS = {"none", "n/a", "없음", "-", "nothing"}

IMPACT_ALIASES: dict[str, Impact] = {
    "high": "high",
    "높음": "high",
    "medium": "medium",
    "중간": "medium",
    "보통": "medium",
    "low": "low",
    "낮음": "low",
}

OBJECTIVE_HEADINGS = ("objective", "goal", "목표")
AFFECTED_FILES_HEADINGS = ("affected files", "영향 파일", "영향")
PHASES_HEADINGS = ("phases", "implementation steps", "단계별 계획")
RISKS_HEADINGS = ("risks", "리스크", "고려사항")
CHANGED_FILES_HEADINGS = ("changed files", "변경 파일")
OVERALL_HEADINGS = ("overall assessment", "종합 평가")
POSITIVES_HEADINGS = ("positive", "strengths", "긍정")
CRITICAL_HEADINGS = ("critical issues", "critical", "심각")
SUGGESTIONS_HEADINGS = ("suggestions", "improvement", "개선 제안", "제안")
SECURITY_HEADINGS = ("security check", "보안 검사", "security", "보안")
DECISION_HEADINGS = ("final decision", "decision", "최종 결정", "결정")
CONDITIONS_HEADINGS = ("conditions", "승인 조건")

DEFAULT_MITIGATION = "Mitigation to be reviewed."
DEFAULT_IMPLEMENTATION_MESSAGE = "Implementation complete."
DEFAULT_CHANGE_SUMMARY = "File changed."
DEFAULT_REVIEW_SCORE = 80


@dataclass(slots=True)
class Heading:
    level: int
    text: str
    line: int


@dataclass(slots=True)
class CodeBlock:
    language: str
    code: str
    label: str | None = None
    line: int = 0


@dataclass(slots=True)
class ExtractedFileChange:
    path: str
    content: str
    change_kind: ChangeKind
    summary: str = DEFAULT_CHANGE_SUMMARY
    lines_added: int = 0
    lines_removed: int = 0


@dataclass(slots=True)
class ExtractedImplementation:
    message: str
    file_changes: list[ExtractedFileChange] = field(default_factory=list)


class MarkdownDocument:
    """Indexed view over a markdown document.

    Headings inside fenced code blocks are ignored. A fenced block's label is
    the file path carried by a ``###``/``####`` heading on the closest
    preceding non-blank line.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.lines = text.splitlines()
        self.headings: list[Heading] = []
        self.code_blocks: list[CodeBlock] = []
        self._scan()

    def _scan(self) -> None:
        fence: str | None = None
        language = ""
        label: str | None = None
        start = 0
        body: list[str] = []
        last_content_line: int | None = None

        for index, line in enumerate(self.lines):
            if fence is not None:
                if line.strip().startswith(fence) and not line.strip().strip(fence[0]):
                    self.code_blocks.append(
                        CodeBlock(language=language, code="\n".join(body), label=label, line=start)
                    )
                    fence = None
                    body = []
                    last_content_line = index
                else:
                    body.append(line)
                continue

            fence_match = FENCE_OPEN_PATTERN.match(line)
            if fence_match:
                fence = fence_match.group(1)
                language = fence_match.group(2) or "text"
                label = self._label_for(last_content_line)
                start = index
                continue

            heading_match = HEADING_PATTERN.match(line)
            if heading_match:
                self.headings.append(
                    Heading(
                        level=len(heading_match.group(1)),
                        text=heading_match.group(2).strip(),
                        line=index,
                    )
                )
            if line.strip():
                last_content_line = index

        if fence is not None:
            self.code_blocks.append(
                CodeBlock(language=language, code="\n".join(body), label=label, line=start)
            )

    def _label_for(self, line_index: int | None) -> str | None:
        if line_index is None:
            return None
        match = HEADING_PATTERN.match(self.lines[line_index])
        if not match or len(match.group(1)) not in (3, 4):
            return None
        label_match = FILE_LABEL_PATTERN.match(match.group(2).strip())
        return label_match.group(1) if label_match else None

    def find_heading(self, *aliases: str) -> Heading | None:
        for alias in aliases:
            needle = alias.lower()
            for heading in self.headings:
                if needle in heading.text.lower():
                    return heading
        return None

    def section(self, *aliases: str) -> str | None:
        heading = self.find_heading(*aliases)
        if heading is None:
            return None
        end = len(self.lines)
        for candidate in self.headings:
            if candidate.line > heading.line:
                end = candidate.line
                break
        return "\n".join(self.lines[heading.line + 1 : end]).strip()


def extract_section(text: str, *aliases: str) -> str | None:
    return MarkdownDocument(text).section(*aliases)


def extract_code_blocks(text: str) -> list[CodeBlock]:
    return list(MarkdownDocument(text).code_blocks)


def _normalize_cell(value: str) -> str:
    return value.replace("`", "").strip()


def parse_markdown_table(text: str) -> list[dict[str, str]]:
    """Parse the first pipe table in ``text`` into dicts keyed by header cell."""
    rows = [line.strip() for line in text.splitlines() if line.strip().startswith("|")]
    if len(rows) < 2:
        return []

    def _cells(row: str) -> list[str]:
        return [_normalize_cell(cell) for cell in row.strip().strip("|").split("|")]

    headers = _cells(rows[0])
    parsed: list[dict[str, str]] = []
    for row in rows[1:]:
        if TABLE_SEPARATOR_PATTERN.match(row):
            continue
        cells = _cells(row)
        if len(cells) != len(headers):
            continue
        parsed.append(dict(zip(headers, cells, strict=True)))
    return parsed


def parse_markdown_list(text: str) -> list[str]:
    items: list[str] = []
    for line in text.splitlines():
        match = LIST_ITEM_PATTERN.match(line.strip())
        if match:
            items.append(match.group(1).strip())
    return items


def normalize_change_kind(value: str) -> ChangeKind:
    lowered = value.lower().strip()
    if any(word in lowered for word in ("create", "new", "add", "신규", "생성")):
        return "create"
    if any(word in lowered for word in ("delete", "remove", "삭제", "제거")):
        return "delete"
    return "modify"


def determine_change_kind(text: str, path: str) -> ChangeKind:
    """Guess a change kind from keywords near the first mention of ``path``.

    Coarse on purpose: nearby keywords from a neighbouring file can leak in.
    """
    lowered = text.lower()
    position = lowered.find(path.lower())
    if position < 0:
        return "modify"
    window = lowered[
        max(0, position - CHANGE_CONTEXT_WINDOW) : position + len(path) + CHANGE_CONTEXT_WINDOW
    ]
    if any(keyword in window for keyword in CREATE_KEYWORDS):
        return "create"
    if any(keyword in window for keyword in DELETE_KEYWORDS):
        return "delete"
    return "modify"


def _count_lines(content: str) -> tuple[int, int]:
    if not content:
        return 0, 0
    lines = content.split("\n")
    removed = sum(1 for line in lines if line.strip().startswith("-"))
    return len(lines) - removed, removed


def _file_changes(document: MarkdownDocument) -> list[ExtractedFileChange]:
    changes: list[ExtractedFileChange] = []
    seen: set[str] = set()

    for block in document.code_blocks:
        if block.label and block.label not in seen:
            seen.add(block.label)
            changes.append(
                ExtractedFileChange(
                    path=block.label,
                    content=block.code,
                    change_kind=determine_change_kind(document.text, block.label),
                )
            )

    listed = document.section(*CHANGED_FILES_HEADINGS)
    if listed:
        paths = BACKTICK_PATH_PATTERN.findall(listed)
        unlabeled = [block for block in document.code_blocks if not block.label]
        for path, block in zip(paths, unlabeled, strict=False):
            if path in seen:
                continue
            seen.add(path)
            changes.append(
                ExtractedFileChange(
                    path=path,
                    content=block.code,
                    change_kind=determine_change_kind(document.text, path),
                )
            )
    return changes


def extract_file_changes(text: str) -> list[ExtractedFileChange]:
    return _file_changes(MarkdownDocument(text))


def _lookup(row: dict[str, str], *keys: str) -> str:
    lowered = {key.lower(): value for key, value in row.items()}
    for key in keys:
        value = lowered.get(key.lower())
        if value:
            return value
    return ""


def _affected_files(section: str) -> list[AffectedFile]:
    files: list[AffectedFile] = []
    for row in parse_markdown_table(section):
        path = _lookup(row, "file", "path", "파일", "경로")
        if not path:
            continue
        files.append(
            AffectedFile(
                path=path,
                change_kind=normalize_change_kind(
                    _lookup(row, "change type", "change", "변경 유형", "유형") or "modify"
                ),
                description=_lookup(row, "description", "설명"),
            )
        )
    if files:
        return files

    for item in parse_markdown_list(section):
        match = AFFECTED_LIST_PATTERN.match(item)
        if not match:
            continue
        files.append(
            AffectedFile(
                path=match.group(1).strip(),
                change_kind=normalize_change_kind(match.group(2) or "modify"),
                description=match.group(3).strip(),
            )
        )
    return files


def _phases(section: str) -> list[PlanPhase]:
    phases: list[PlanPhase] = []
    number: int | None = None
    title = ""
    tasks: list[PlanTask] = []

    def _flush() -> None:
        if number is not None:
            phases.append(PlanPhase(number=number, title=title, tasks=tuple(tasks)))

    for raw in section.splitlines():
        line = raw.strip()
        phase_match = PHASE_PATTERN.match(line)
        if phase_match:
            _flush()
            number = int(phase_match.group(1))
            title = phase_match.group(2).strip()
            tasks = []
            continue
        task_match = TASK_PATTERN.match(line)
        if number is not None and task_match:
            description = task_match.group(1).strip()
            path_match = BACKTICK_PATH_PATTERN.search(description)
            tasks.append(
                PlanTask(
                    id=f"task-{number}-{len(tasks) + 1}",
                    description=description,
                    completed=line[2:].lstrip().lower().startswith("[x]"),
                    file=path_match.group(1) if path_match else None,
                )
            )
    _flush()
    return phases


def _risks(section: str) -> list[Risk]:
    risks: list[Risk] = []
    for raw in section.splitlines():
        match = RISK_PATTERN.match(raw.strip())
        if not match:
            continue
        risks.append(
            Risk(
                description=match.group(2).strip(),
                impact=IMPACT_ALIASES[match.group(1).lower()],
                mitigation=(match.group(3) or "").strip() or DEFAULT_MITIGATION,
            )
        )
    return risks


def extract_plan(text: str, original_request: str) -> PlanResult:
    document = MarkdownDocument(text)

    title: str | None = None
    for heading in document.headings:
        if heading.level > 2:
            continue
        match = PLAN_TITLE_PATTERN.match(heading.text)
        if match:
            title = match.group(1).strip()
            break

    objective = document.section(*OBJECTIVE_HEADINGS) or original_request
    affected_section = document.section(*AFFECTED_FILES_HEADINGS)
    affected_files = _affected_files(affected_section) if affected_section else []
    phases_section = document.section(*PHASES_HEADINGS)
    phases = _phases(phases_section) if phases_section else []
    risks_section = document.section(*RISKS_HEADINGS)
    risks = _risks(risks_section) if risks_section else []

    if title is None and not affected_files and not phases:
        return PlanResult(
            success=False,
            message="Plan extraction failed: no recognizable content found.",
            error="Could not extract plan information from the response.",
            title=original_request[:50],
            objective=original_request,
            next_step="coder",
        )

    return PlanResult(
        success=True,
        message="Plan created.",
        title=title or original_request[:50],
        objective=objective,
        affected_files=tuple(affected_files),
        phases=tuple(phases),
        risks=tuple(risks),
        next_step="coder",
    )


def extract_implementation(text: str) -> ExtractedImplementation:
    document = MarkdownDocument(text)

    message = DEFAULT_IMPLEMENTATION_MESSAGE
    for heading in document.headings:
        match = IMPLEMENTATION_TITLE_PATTERN.match(heading.text)
        if match:
            message = match.group(1).strip()
            break

    summaries: dict[str, str] = {}
    listed = document.section(*CHANGED_FILES_HEADINGS)
    if listed:
        for raw in listed.splitlines():
            match = SUMMARY_LINE_PATTERN.match(raw.strip())
            if match:
                summaries[match.group(1)] = match.group(2).strip()

    changes = _file_changes(document)
    for change in changes:
        change.summary = summaries.get(change.path, DEFAULT_CHANGE_SUMMARY)
        change.lines_added, change.lines_removed = _count_lines(change.content)
    return ExtractedImplementation(message=message, file_changes=changes)


def _verdict(section: str, pattern: str) -> Verdict | None:
    match = re.search(rf"(?:{pattern})[*:\s]+(pass|warning|fail)", section, re.IGNORECASE)
    return match.group(1).lower() if match else None  # type: ignore[return-value]


def _review_summary(section: str | None) -> ReviewSummary:
    if not section:
        return ReviewSummary()
    return ReviewSummary(
        quality=_verdict(section, "quality|품질") or "pass",
        security=_verdict(section, "security|보안") or "pass",
        performance=_verdict(section, "performance|성능") or "pass",
        test_coverage=_verdict(section, "test coverage|coverage|커버리지") or "pass",
    )


def _issues(section: str | None) -> list[ReviewIssue]:
    if not section:
        return []
    issues: list[ReviewIssue] = []
    for item in parse_markdown_list(section):
        if item.strip().strip("*_.").lower() in EMPTY_MARKERS:
            continue
        match = ISSUE_PATTERN.match(item)
        if match:
            issues.append(
                ReviewIssue(
                    file=match.group(1).strip(),
                    line=int(match.group(2)),
                    description=match.group(3).strip(),
                )
            )
        else:
            issues.append(ReviewIssue(file="", description=item))
    return issues


def _security_value(value: str) -> SecurityVerdict:
    lowered = value.lower()
    if "vulnerable" in lowered or "취약" in lowered:
        return "vulnerable"
    if "warning" in lowered or "주의" in lowered:
        return "warning"
    if "safe" in lowered or "안전" in lowered:
        return "safe"
    return "not_applicable"


def _security_check(section: str | None) -> SecurityCheck:
    defaults = {
        "sql_injection": "not_applicable",
        "xss": "safe",
        "csrf": "not_applicable",
        "authentication": "safe",
        "sensitive_data": "safe",
    }
    if section:
        patterns = {
            "sql_injection": r"sql\s*injection",
            "xss": r"xss",
            "csrf": r"csrf",
            "authentication": r"authentication|인증",
            "sensitive_data": r"sensitive\s*data|민감",
        }
        for key, pattern in patterns.items():
            match = re.search(rf"(?:{pattern})[*:\s]+([\w/가-힣]+)", section, re.IGNORECASE)
            if match:
                defaults[key] = _security_value(match.group(1))
    return SecurityCheck(**defaults)  # type: ignore[arg-type]


def _decision(section: str | None) -> ReviewDecision:
    if not section:
        return "approved"
    lowered = section.lower()
    # "conditional approval" also contains "approv", so it is checked first.
    if any(word in lowered for word in ("conditional", "조건부", "조건")):
        return "conditional"
    if any(word in lowered for word in ("reject", "거부", "반려")):
        return "rejected"
    return "approved"


def extract_review(text: str) -> ReviewResult:
    document = MarkdownDocument(text)

    score_match = SCORE_PATTERN.search(text)
    overall = document.section(*OVERALL_HEADINGS)
    positives_section = document.section(*POSITIVES_HEADINGS)
    positives = [
        item
        for item in (parse_markdown_list(positives_section) if positives_section else [])
        if item.lower() not in EMPTY_MARKERS
    ]
    critical = _issues(document.section(*CRITICAL_HEADINGS))
    suggestions = _issues(document.section(*SUGGESTIONS_HEADINGS))

    found = bool(score_match or positives or critical or suggestions) or overall is not None
    if not found:
        return ReviewResult(
            success=False,
            message="Review extraction failed: no recognizable content found.",
            error="Could not extract review information from the response.",
            next_step="coder",
        )

    score = int(score_match.group(1)) if score_match else DEFAULT_REVIEW_SCORE
    decision = _decision(document.section(*DECISION_HEADINGS))
    conditions_section = document.section(*CONDITIONS_HEADINGS)
    return ReviewResult(
        success=True,
        message="Code review completed.",
        score=max(0, min(100, score)),
        summary=_review_summary(overall),
        positives=tuple(positives),
        critical_issues=tuple(critical),
        suggestions=tuple(suggestions),
        security_check=_security_check(document.section(*SECURITY_HEADINGS)),
        decision=decision,
        conditions=tuple(parse_markdown_list(conditions_section)) if conditions_section else (),
        next_step="complete" if decision == "approved" else "coder",
    )
