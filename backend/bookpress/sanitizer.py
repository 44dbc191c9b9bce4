"""
BookPress V1.0 — Fragment Sanitizer
===================================
Makes one chapter's LaTeX safe to splice into the full book:

    1. balance known environments (append missing \\end, drop orphan \\end)
    2. balance brace groups
    3. strip leaked preamble / package / file-inclusion directives
    4. strip echoed prompt artifacts
    5. collapse runs of blank lines

Smaller repairs (unescaped %, \\par, broken section arguments, escape
corruption, table rows) run around those steps. ``sanitize_fragment`` never
raises and is idempotent.
"""

from __future__ import annotations

import regex as re

KNOWN_ENVS = (
    "tipbox",
    "keyinsight",
    "warningbox",
    "examplebox",
    "itemize",
    "enumerate",
    "quote",
    "table",
    "tabularx",
    "tabular",
    "center",
    "figure",
    "minipage",
    "description",
    "wrapfigure",
)

# (outer, inner) pairs whose \end markers the model sometimes emits reversed
NESTING_PAIRS = (
    ("table", "tabularx"),
    ("table", "tabular"),
    ("figure", "center"),
    ("table", "center"),
)

SECTION_COMMANDS = ("chapter", "section", "subsection", "caption")
SECTION_ARG_LIMIT = 400
MAX_ROUNDS = 3

_RULE_LINE = re.compile(r"^\\(toprule|midrule|bottomrule|hline)")
_TRAILING_RULES = re.compile(r"(\s*\\(?:hline|toprule|midrule|bottomrule|cline\{[^}]*\}))+\s*$")
_CELL_SPLIT = re.compile(r"(?<!\\)&")
# % behind an even run of backslashes (\\% is a line break, then a comment)
_BARE_PERCENT = re.compile(r"(?<!\\)((?:\\\\)*)%")


# ──────────────────────────────────────────────
# SCANNING HELPERS
# ──────────────────────────────────────────────
def _env_pattern(kind: str, env: str) -> re.Pattern:
    return re.compile(r"\\" + kind + r"\{" + re.escape(env) + r"\}")


def count_env_markers(text: str, env: str) -> tuple[int, int]:
    """Return ``(opens, closes)`` for ``\\begin{env}`` / ``\\end{env}``."""
    return (
        len(_env_pattern("begin", env).findall(text)),
        len(_env_pattern("end", env).findall(text)),
    )


def _scan_braces(text: str) -> tuple[int, list[int]]:
    """
    Walk ``text`` tracking group depth.

    Backslash escapes the next character and ``%`` comments run to the end
    of the line. Returns the final depth and the positions of ``}`` that
    closed nothing.
    """
    depth = 0
    orphans: list[int] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "%":
            nl = text.find("\n", i)
            if nl == -1:
                break
            i = nl
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            if depth == 0:
                orphans.append(i)
            else:
                depth -= 1
        i += 1
    return depth, orphans


def brace_depth(text: str) -> int:
    """Net group depth of ``text``; orphan closers count as -1 each."""
    depth, orphans = _scan_braces(text)
    return depth - len(orphans)


def _matching_brace(text: str, open_idx: int) -> int:
    """Index just past the ``}`` matching ``text[open_idx]``, or -1."""
    depth = 0
    i = open_idx
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return -1


def escape_latex(text: str) -> str:
    """Escape user-supplied plain text for use inside LaTeX."""
    out = []
    for ch in text:
        if ch == "\\":
            out.append(r"\textbackslash{}")
        elif ch in "&%$#_{}":
            out.append("\\" + ch)
        elif ch == "~":
            out.append(r"\textasciitilde{}")
        elif ch == "^":
            out.append(r"\textasciicircum{}")
        else:
            out.append(ch)
    return "".join(out)


# ──────────────────────────────────────────────
# SMALL REPAIRS
# ──────────────────────────────────────────────
def escape_percent(text: str) -> str:
    """Chapter bodies never carry intentional comments; escape bare %."""
    return _BARE_PERCENT.sub(r"\1\\%", text)


def strip_par(text: str) -> str:
    return re.sub(r"\\par\b", "\n", text)


def fix_section_arguments(text: str) -> str:
    """Flatten ``\\par`` and newlines inside short sectioning/caption arguments."""
    result = text
    for cmd in SECTION_COMMANDS:
        pattern = re.compile(r"\\" + cmd + r"\*?\{")
        replacements = []
        for m in pattern.finditer(result):
            open_idx = m.end() - 1
            end = _matching_brace(result, open_idx)
            if end == -1:
                continue
            arg = result[open_idx + 1 : end - 1]
            if len(arg) > SECTION_ARG_LIMIT:
                continue
            if "\\par" in arg or "\n" in arg:
                cleaned = re.sub(r"\\par\b", " ", arg)
                cleaned = re.sub(r"\n+", " ", cleaned)
                cleaned = re.sub(r"\s{2,}", " ", cleaned).strip()
                replacements.append((m.start(), end, result[m.start() : open_idx + 1] + cleaned + "}"))
        for start, end, fixed in reversed(replacements):
            result = result[:start] + fixed + result[end:]
    return result


def strip_escape_corruption(text: str) -> str:
    """Remove ``\\textbackslash{}`` chains left by repeated escaping."""
    result = re.sub(
        r"(?:\\textbackslash\\?\{\}|textbackslash\\?\{\}|\\textbackslash\\\\\\?\{\}){2,}",
        "",
        text,
    )

    def _recover(m: re.Match) -> str:
        line = m.group(0)
        readable = line
        for junk in (r"\textbackslash\{}", r"\textbackslash{}", r"textbackslash\{}", "textbackslash"):
            readable = readable.replace(junk, "")
        readable = re.sub(r"\\\{[^}]*\\\}", "", readable)
        readable = readable.replace("\\{", "").replace("\\}", "")
        readable = readable.replace("{", "").replace("}", "").strip()
        return readable if len(readable) > 5 else ""

    return re.sub(
        r"^.*?(?:\\textbackslash|textbackslash\\?\{\}){5,}.*$",
        _recover,
        result,
        flags=re.MULTILINE,
    )


def strip_leaked_column_specs(text: str) -> str:
    """Drop stray lines such as ``p{3cm}Xp{3cm}}`` leaked into table bodies."""

    def _drop(m: re.Match) -> str:
        t = m.group(0).strip()
        if 1 < len(t) < 40 and re.search(r"[lcrXp]", t) and not re.search(r"[a-zA-Z]{4,}", t):
            return ""
        return m.group(0)

    return re.sub(r"^[ \t]*\{?[lcrXp{}\d.cm \t|]+\}?[ \t]*$", _drop, text, flags=re.MULTILINE)


# ──────────────────────────────────────────────
# STEP 1: ENVIRONMENT BALANCE
# ──────────────────────────────────────────────
def _scan_env(text: str, env: str) -> tuple[list[int], list[re.Match]]:
    """Unmatched ``\\begin`` positions and orphan ``\\end`` matches for one env."""
    marker = re.compile(r"\\(begin|end)\{" + re.escape(env) + r"\}")
    stack: list[int] = []
    orphans: list[re.Match] = []
    for m in marker.finditer(text):
        if m.group(1) == "begin":
            stack.append(m.start())
        elif stack:
            stack.pop()
        else:
            orphans.append(m)
    return stack, orphans


def balance_environments(text: str) -> str:
    result = text
    missing: list[tuple[int, str]] = []
    for env in KNOWN_ENVS:
        opens, closes = count_env_markers(result, env)
        if closes > opens:
            _, orphans = _scan_env(result, env)
            excess = orphans[: closes - opens]
            for m in reversed(excess):
                result = result[: m.start()] + result[m.end() :]
            print(f"   🔧 LaTeX fix: removed {len(excess)} orphan \\end{{{env}}}")

    for env in KNOWN_ENVS:
        opens, closes = count_env_markers(result, env)
        if opens > closes:
            unmatched, _ = _scan_env(result, env)
            for pos in unmatched[-(opens - closes) :]:
                missing.append((pos, env))
            print(f"   🔧 LaTeX fix: added {opens - closes} missing \\end{{{env}}}")

    # Innermost (latest opened) blocks close first
    for _, env in sorted(missing, reverse=True):
        result += "\n\\end{" + env + "}"
    return result


def fix_environment_nesting(text: str) -> str:
    """Swap reversed closers such as ``\\end{table}\\end{tabularx}``."""
    result = text
    for outer, inner in NESTING_PAIRS:
        pattern = re.compile(r"(\\end\{" + outer + r"\})(\s*)(\\end\{" + inner + r"\})")
        result = pattern.sub(r"\3\2\1", result)
    return result


# ──────────────────────────────────────────────
# STEP 2: BRACE BALANCE
# ──────────────────────────────────────────────
def balance_braces(text: str) -> str:
    depth, orphans = _scan_braces(text)
    result = text
    if orphans:
        for pos in reversed(orphans):
            result = result[:pos] + result[pos + 1 :]
        print(f"   🔧 LaTeX fix: removed {len(orphans)} orphan closing braces")
    if depth > 0:
        last_line = result.rsplit("\n", 1)[-1]
        if _BARE_PERCENT.search(last_line):
            result += "\n"
        result += "}" * depth
        print(f"   🔧 LaTeX fix: closed {depth} unclosed braces")
    return result


# ──────────────────────────────────────────────
# STEP 3: PREAMBLE / DIRECTIVE LEAKS
# ──────────────────────────────────────────────
_DANGEROUS = re.compile(
    r"\\immediate\\write18\{[^}]*\}"
    r"|\\write18\{[^}]*\}"
    r"|\\(?:input|include|openout\d*)\{[^}]*\}"
)


def strip_preamble_artifacts(text: str) -> str:
    result = re.sub(r"\\documentclass[\s\S]*?\\begin\{document\}", "", text)
    result = result.replace("\\end{document}", "")
    result = re.sub(r"\\usepackage(\[[^\]]*\])?\{[^}]*\}", "", result)
    return _DANGEROUS.sub("", result)


# ──────────────────────────────────────────────
# STEP 4: PROMPT ECHOES
# ──────────────────────────────────────────────
_ECHO_HEADERS = re.compile(
    r"^(QUALITY CHECKLIST|WORD COUNT TARGET|SECTIONS TO WRITE|RULES FOR CONTINUATION|Begin LaTeX output now).*$",
    re.MULTILINE,
)
_ECHO_WARNINGS = re.compile(
    r"^⚠\ufe0f?\s+(Hard limits|STRICT MAXIMUM|COMPLETE every|CONTINUITY|THIS IS THE FINAL|ENSURE every|STOP writing|Close every opened).*$",
    re.MULTILINE,
)


def strip_prompt_echoes(text: str) -> str:
    result = re.sub(r"\\begin\{\.{0,3}\}", "", text)
    result = re.sub(r"\\end\{\.{0,3}\}", "", result)
    result = re.sub(r"^□\s+.*$", "", result, flags=re.MULTILINE)
    result = _ECHO_HEADERS.sub("", result)
    return _ECHO_WARNINGS.sub("", result)


# ──────────────────────────────────────────────
# TABLE REPAIRS
# ──────────────────────────────────────────────
def _column_count(spec: str) -> int:
    """Columns declared at brace depth 0; 0 when the spec is too exotic."""
    if "*" in spec:
        return 0
    count = 0
    depth = 0
    for ch in spec:
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif depth == 0 and ch in "lcrXpmb":
            count += 1
    return count


def _fix_row(line: str, expected: int) -> str:
    trimmed = line.strip()
    if not trimmed or _RULE_LINE.match(trimmed) or "\\multicolumn" in trimmed:
        return line
    rules = _TRAILING_RULES.search(trimmed)
    core = trimmed[: rules.start()] if rules else trimmed
    trailing = rules.group(0) if rules else ""

    if not _CELL_SPLIT.search(core):
        if not core.endswith("\\\\") and not re.match(r"^\\[a-zA-Z]+", core):
            return line + " \\\\"
        return line

    m = re.match(r"^(.+?)(\s*\\\\)?\s*$", core)
    content = m.group(1)
    row_end = m.group(2) or " \\\\"
    cells = _CELL_SPLIT.split(content)
    if len(cells) == expected:
        return line
    if len(cells) > expected:
        cells = cells[: expected - 1] + [", ".join(c.strip() for c in cells[expected - 1 :])]
    else:
        cells = cells + [" "] * (expected - len(cells))
    return " & ".join(c.strip() for c in cells) + row_end + trailing


def _fix_tabularx_rows(text: str) -> str:
    out = []
    pos = 0
    begin = re.compile(r"\\begin\{tabularx\}")
    while True:
        m = begin.search(text, pos)
        if not m:
            out.append(text[pos:])
            break
        width_end = _matching_brace(text, m.end()) if text[m.end() : m.end() + 1] == "{" else -1
        spec_end = _matching_brace(text, width_end) if width_end != -1 and text[width_end : width_end + 1] == "{" else -1
        close = text.find("\\end{tabularx}", spec_end) if spec_end != -1 else -1
        if close == -1:
            out.append(text[pos : m.end()])
            pos = m.end()
            continue
        spec = text[width_end + 1 : spec_end - 1]
        expected = _column_count(spec)
        body = text[spec_end:close]
        if expected > 0:
            body = "\n".join(_fix_row(line, expected) for line in body.split("\n"))
        out.append(text[pos:spec_end] + body)
        pos = close
    return "".join(out)


def _terminate_last_rows(text: str) -> str:
    """Make sure the data row before ``\\bottomrule`` / ``\\end{tabular[x]}`` ends with ``\\\\``."""
    lines = text.split("\n")
    for j, line in enumerate(lines):
        t = line.strip()
        if not (t.startswith("\\bottomrule") or t.startswith("\\end{tabularx}") or t.startswith("\\end{tabular}")):
            continue
        for k in range(j - 1, -1, -1):
            prev = lines[k].strip()
            if not prev:
                continue
            if _CELL_SPLIT.search(prev) and not _TRAILING_RULES.sub("", prev).endswith("\\\\"):
                lines[k] = lines[k].rstrip() + " \\\\"
            break
    return "\n".join(lines)


def repair_tables(text: str) -> str:
    result = text.replace("|||MIDRULE|||", "\\midrule")
    result = re.sub(r"\\\{[lcrXp|.\s{}0-9cm]{2,}\\\}", "", result)
    result = _fix_tabularx_rows(result)
    return _terminate_last_rows(result)


# ──────────────────────────────────────────────
# STEP 5 + ENTRY POINT
# ──────────────────────────────────────────────
def collapse_blank_lines(text: str) -> str:
    return re.sub(r"\n{4,}", "\n\n\n", text)


def _sanitize_once(text: str) -> str:
    result = escape_percent(text)
    result = strip_par(result)
    result = fix_section_arguments(result)
    result = strip_escape_corruption(result)
    result = strip_leaked_column_specs(result)

    result = balance_environments(result)
    result = fix_environment_nesting(result)
    result = balance_braces(result)
    result = fix_section_arguments(result)
    result = strip_preamble_artifacts(result)
    result = strip_prompt_echoes(result)
    result = repair_tables(result)
    return collapse_blank_lines(result)


def sanitize_fragment(text: str) -> str:
    """
    Best-effort repair of one chapter fragment.

    Repeats the repair pass until the output is stable (bounded), so
    sanitizing an already sanitized fragment is a no-op. Defects that
    cannot be classified are left in place for the compiler to report.
    """
    if not text:
        return ""
    result = text
    for _ in range(MAX_ROUNDS):
        try:
            repaired = _sanitize_once(result)
        except re.error as e:
            print(f"   ⚠️ Sanitizer regex failure, keeping fragment as is: {e}")
            return result
        if repaired == result:
            break
        result = repaired
    return result
