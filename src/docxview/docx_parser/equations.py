"""Equation converter - OMML (Office Math Markup Language) to LaTeX.

Conversion is a recursive walk over ``m:`` elements dispatched through a
handler table. Each handler returns a LaTeX fragment; unknown elements fall
back to the concatenation of their children.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from lxml import etree

from docxview.docx_parser.container import NAMESPACES

logger = logging.getLogger(__name__)

M = f"{{{NAMESPACES['m']}}}"

GREEK = {
    "α": r"\alpha", "β": r"\beta", "γ": r"\gamma", "δ": r"\delta",
    "ε": r"\epsilon", "ϵ": r"\epsilon", "ζ": r"\zeta", "η": r"\eta",
    "θ": r"\theta", "ϑ": r"\vartheta", "ι": r"\iota", "κ": r"\kappa",
    "λ": r"\lambda", "μ": r"\mu", "ν": r"\nu", "ξ": r"\xi", "π": r"\pi",
    "ρ": r"\rho", "σ": r"\sigma", "ς": r"\varsigma", "τ": r"\tau",
    "υ": r"\upsilon", "φ": r"\phi", "ϕ": r"\phi", "χ": r"\chi",
    "ψ": r"\psi", "ω": r"\omega",
    "Γ": r"\Gamma", "Δ": r"\Delta", "Θ": r"\Theta", "Λ": r"\Lambda",
    "Ξ": r"\Xi", "Π": r"\Pi", "Σ": r"\Sigma", "Υ": r"\Upsilon",
    "Φ": r"\Phi", "Ψ": r"\Psi", "Ω": r"\Omega",
}

OPERATORS = {
    "≤": r"\leq", "≥": r"\geq", "≠": r"\neq", "≈": r"\approx",
    "≡": r"\equiv", "∼": r"\sim", "≅": r"\cong", "∝": r"\propto",
    "×": r"\times", "÷": r"\div", "·": r"\cdot", "⋅": r"\cdot",
    "±": r"\pm", "∓": r"\mp", "∘": r"\circ", "∗": "*",
    "→": r"\rightarrow", "←": r"\leftarrow", "↔": r"\leftrightarrow",
    "⇒": r"\Rightarrow", "⇐": r"\Leftarrow", "⇔": r"\Leftrightarrow",
    "↦": r"\mapsto", "∞": r"\infty", "∂": r"\partial", "∇": r"\nabla",
    "∈": r"\in", "∉": r"\notin", "∋": r"\ni", "⊂": r"\subset",
    "⊃": r"\supset", "⊆": r"\subseteq", "⊇": r"\supseteq", "∪": r"\cup",
    "∩": r"\cap", "∅": r"\emptyset", "∀": r"\forall", "∃": r"\exists",
    "¬": r"\neg", "∧": r"\wedge", "∨": r"\vee", "⊕": r"\oplus",
    "⊗": r"\otimes", "…": r"\ldots", "⋯": r"\cdots", "⋮": r"\vdots",
    "⋱": r"\ddots", "ℏ": r"\hbar", "ℓ": r"\ell", "′": "'", "″": "''",
    "−": "-", "√": r"\surd", "∠": r"\angle", "⊥": r"\perp",
    "∥": r"\parallel", "°": r"^{\circ}",
}

NARY = {
    "∑": r"\sum", "∏": r"\prod", "∐": r"\coprod", "∫": r"\int",
    "∬": r"\iint", "∭": r"\iiint", "∮": r"\oint", "⋃": r"\bigcup",
    "⋂": r"\bigcap", "⋁": r"\bigvee", "⋀": r"\bigwedge",
}

ACCENTS = {
    "̂": r"\hat", "^": r"\hat",
    "̃": r"\tilde", "~": r"\tilde",
    "̄": r"\bar", "̅": r"\bar", "¯": r"\bar",
    "̇": r"\dot", "̈": r"\ddot",
    "⃗": r"\vec", "⃑": r"\vec",
    "̌": r"\check", "̆": r"\breve",
    "́": r"\acute", "̀": r"\grave",
}

DELIMITERS = {
    "{": r"\{", "}": r"\}", "⟨": r"\langle", "⟩": r"\rangle",
    "‖": r"\|", "⌊": r"\lfloor", "⌋": r"\rfloor", "⌈": r"\lceil",
    "⌉": r"\rceil", "": ".",
}

FUNCTIONS = {
    "sin", "cos", "tan", "cot", "sec", "csc", "arcsin", "arccos", "arctan",
    "sinh", "cosh", "tanh", "coth", "log", "ln", "lg", "exp", "lim", "max",
    "min", "det", "gcd", "deg", "arg", "dim", "ker", "sup", "inf", "Pr",
}


def _local(elem: etree._Element) -> str:
    if not isinstance(elem.tag, str):
        return ""
    return etree.QName(elem).localname


def _children(elem: Optional[etree._Element]) -> List[etree._Element]:
    """Content children, skipping property elements (``*Pr``)."""
    if elem is None:
        return []
    return [c for c in elem if isinstance(c.tag, str) and not _local(c).endswith("Pr")]


def _child(elem: etree._Element, name: str) -> Optional[etree._Element]:
    return elem.find(f"m:{name}", NAMESPACES)


def _prop(elem: etree._Element, path: str) -> Optional[str]:
    """Read ``m:val`` of a property element such as ``m:fPr/m:type``."""
    prop = elem.find(path, NAMESPACES)
    if prop is None:
        return None
    return prop.get(f"{M}val")


def _hidden(elem: etree._Element, path: str) -> bool:
    prop = elem.find(path, NAMESPACES)
    if prop is None:
        return False
    return (prop.get(f"{M}val") or "1").lower() in ("1", "on", "true")


def _join(parts: List[str]) -> str:
    """Concatenate fragments, separating a control word from a following letter."""
    out = ""
    for part in parts:
        if not part:
            continue
        if out and out[-1].isalpha() and part[0].isalpha() and _ends_with_command(out):
            out += " "
        out += part
    return out


def _ends_with_command(text: str) -> bool:
    i = len(text)
    while i > 0 and text[i - 1].isalpha():
        i -= 1
    return i > 0 and text[i - 1] == "\\"


def _convert(elem: Optional[etree._Element]) -> str:
    if elem is None:
        return ""
    handler = _HANDLERS.get(_local(elem), _container)
    return handler(elem)


def _container(elem: etree._Element) -> str:
    return _join([_convert(c) for c in _children(elem)])


def _map_text(text: str) -> str:
    parts = []
    for ch in text:
        if ch in GREEK:
            parts.append(GREEK[ch])
        elif ch in OPERATORS:
            parts.append(OPERATORS[ch])
        elif ch in NARY:
            parts.append(NARY[ch])
        elif ch in "#$%_":
            parts.append("\\" + ch)
        else:
            parts.append(ch)
    return _join(parts)


def _run(elem: etree._Element) -> str:
    text = "".join(t.text or "" for t in elem.findall("m:t", NAMESPACES))
    if not text:
        return ""
    rpr = elem.find("m:rPr", NAMESPACES)
    if rpr is not None and rpr.find("m:nor", NAMESPACES) is not None:
        return f"\\text{{{text}}}"
    stripped = text.strip()
    if stripped in FUNCTIONS:
        return f"\\{stripped}"
    return _map_text(text)


def _fraction(elem: etree._Element) -> str:
    num = _convert(_child(elem, "num"))
    den = _convert(_child(elem, "den"))
    frac_type = _prop(elem, "m:fPr/m:type")
    if frac_type == "noBar":
        return f"\\binom{{{num}}}{{{den}}}"
    if frac_type == "lin":
        return f"{num}/{den}"
    return f"\\frac{{{num}}}{{{den}}}"


# Bases that are a single character or control word need no braces
_SINGLE_TOKEN = re.compile(r"\\[A-Za-z]+|\\.|.?", re.DOTALL)


def _script(base: str, sub: str = "", sup: str = "") -> str:
    out = base if _SINGLE_TOKEN.fullmatch(base) else f"{{{base}}}"
    if sub:
        out += f"_{{{sub}}}"
    if sup:
        out += f"^{{{sup}}}"
    return out


def _sup(elem: etree._Element) -> str:
    return _script(_convert(_child(elem, "e")), sup=_convert(_child(elem, "sup")))


def _sub(elem: etree._Element) -> str:
    return _script(_convert(_child(elem, "e")), sub=_convert(_child(elem, "sub")))


def _subsup(elem: etree._Element) -> str:
    return _script(
        _convert(_child(elem, "e")),
        sub=_convert(_child(elem, "sub")),
        sup=_convert(_child(elem, "sup")),
    )


def _pre(elem: etree._Element) -> str:
    sub = _convert(_child(elem, "sub"))
    sup = _convert(_child(elem, "sup"))
    base = _convert(_child(elem, "e"))
    return f"{{}}_{{{sub}}}^{{{sup}}}{base}"


def _radical(elem: etree._Element) -> str:
    base = _convert(_child(elem, "e"))
    degree = "" if _hidden(elem, "m:radPr/m:degHide") else _convert(_child(elem, "deg"))
    if degree:
        return f"\\sqrt[{degree}]{{{base}}}"
    return f"\\sqrt{{{base}}}"


def _accent(elem: etree._Element) -> str:
    base = _convert(_child(elem, "e"))
    chr_val = _prop(elem, "m:accPr/m:chr")
    # Only the first scalar decides the accent; the value may carry a trailing combining mark
    accent_char = chr_val[0] if chr_val else "̂"
    command = ACCENTS.get(accent_char)
    if command is None:
        return f"\\overset{{{_map_text(accent_char)}}}{{{base}}}"
    return f"{command}{{{base}}}"


def _bar(elem: etree._Element) -> str:
    base = _convert(_child(elem, "e"))
    if (_prop(elem, "m:barPr/m:pos") or "bot") == "top":
        return f"\\overline{{{base}}}"
    return f"\\underline{{{base}}}"


def _delimiter_symbol(value: Optional[str], default: str) -> str:
    char = default if value is None else value
    return DELIMITERS.get(char, char)


def _delimiter(elem: etree._Element) -> str:
    begin = _delimiter_symbol(_prop(elem, "m:dPr/m:begChr"), "(")
    end = _delimiter_symbol(_prop(elem, "m:dPr/m:endChr"), ")")
    sep_val = _prop(elem, "m:dPr/m:sepChr")
    sep = DELIMITERS.get(sep_val, sep_val) if sep_val is not None else "|"
    items = [_convert(e) for e in elem.findall("m:e", NAMESPACES)]
    inner = sep.join(items) if len(items) > 1 else "".join(items)
    return f"\\left{begin}{inner}\\right{end}"


def _nary(elem: etree._Element) -> str:
    # An absent m:chr means the integral sign
    symbol_char = _prop(elem, "m:naryPr/m:chr") or "∫"
    symbol = NARY.get(symbol_char, _map_text(symbol_char))
    sub = "" if _hidden(elem, "m:naryPr/m:subHide") else _convert(_child(elem, "sub"))
    sup = "" if _hidden(elem, "m:naryPr/m:supHide") else _convert(_child(elem, "sup"))
    base = _convert(_child(elem, "e"))
    out = symbol
    if sub:
        out += f"_{{{sub}}}"
    if sup:
        out += f"^{{{sup}}}"
    return _join([out, base])


def _function(elem: etree._Element) -> str:
    name = _convert(_child(elem, "fName"))
    if name.strip() in FUNCTIONS:
        name = "\\" + name.strip()
    arg = _convert(_child(elem, "e"))
    return f"{name} {arg}"


def _lim_low(elem: etree._Element) -> str:
    base = _convert(_child(elem, "e"))
    limit = _convert(_child(elem, "lim"))
    if base.strip() in FUNCTIONS:
        base = "\\" + base.strip()
    if base.startswith("\\"):
        return f"{base}_{{{limit}}}"
    return f"\\underset{{{limit}}}{{{base}}}"


def _lim_upp(elem: etree._Element) -> str:
    base = _convert(_child(elem, "e"))
    limit = _convert(_child(elem, "lim"))
    return f"\\overset{{{limit}}}{{{base}}}"


def _matrix(elem: etree._Element) -> str:
    rows = []
    for mr in elem.findall("m:mr", NAMESPACES):
        rows.append(" & ".join(_convert(e) for e in mr.findall("m:e", NAMESPACES)))
    return "\\begin{matrix}" + " \\\\ ".join(rows) + "\\end{matrix}"


def _eq_array(elem: etree._Element) -> str:
    rows = [_convert(e) for e in elem.findall("m:e", NAMESPACES)]
    return "\\begin{aligned}" + " \\\\ ".join(rows) + "\\end{aligned}"


def _group_char(elem: etree._Element) -> str:
    base = _convert(_child(elem, "e"))
    char = _prop(elem, "m:groupChrPr/m:chr") or "⏟"
    pos = _prop(elem, "m:groupChrPr/m:pos") or "bot"
    if char == "⏟":
        return f"\\underbrace{{{base}}}"
    if char == "⏞":
        return f"\\overbrace{{{base}}}"
    if pos == "top":
        return f"\\overset{{{_map_text(char)}}}{{{base}}}"
    return f"\\underset{{{_map_text(char)}}}{{{base}}}"


def _phantom(elem: etree._Element) -> str:
    if (_prop(elem, "m:phantPr/m:show") or "1") in ("0", "off", "false"):
        return ""
    return _convert(_child(elem, "e"))


def _math(elem: etree._Element) -> str:
    return _container(elem).strip()


_HANDLERS: Dict[str, Callable[[etree._Element], str]] = {
    "oMathPara": _math,
    "oMath": _math,
    "r": _run,
    "f": _fraction,
    "sSup": _sup,
    "sSub": _sub,
    "sSubSup": _subsup,
    "sPre": _pre,
    "rad": _radical,
    "acc": _accent,
    "bar": _bar,
    "d": _delimiter,
    "nary": _nary,
    "func": _function,
    "limLow": _lim_low,
    "limUpp": _lim_upp,
    "m": _matrix,
    "eqArr": _eq_array,
    "groupChr": _group_char,
    "phant": _phantom,
    "box": _container,
    "borderBox": _container,
}


def omml_to_latex(elem: etree._Element) -> str:
    """Convert an ``m:oMath`` / ``m:oMathPara`` element to LaTeX.

    Raises:
        ValueError: If ``elem`` is not an OMML element.
    """
    if not isinstance(elem.tag, str) or etree.QName(elem).namespace != NAMESPACES["m"]:
        raise ValueError(f"Not an OMML element: {elem.tag!r}")
    return _convert(elem)


def plain_math_text(elem: etree._Element) -> str:
    """Text of all ``m:t`` descendants, used when conversion fails."""
    return "".join(t.text or "" for t in elem.iter(f"{M}t"))


def convert_equation(elem: etree._Element) -> Tuple[str, str]:
    """Convert one equation, degrading to its plain text on failure.

    Returns:
        ``(latex, fallback)``. When conversion fails ``latex`` equals the
        fallback text.
    """
    fallback = plain_math_text(elem)
    try:
        latex = omml_to_latex(elem)
    except (ValueError, TypeError, RecursionError) as e:
        logger.warning(f"Equation conversion failed, using plain text: {e}")
        return fallback, fallback
    return (latex or fallback), fallback


def is_display_math(omath: etree._Element) -> bool:
    """True for ``m:oMathPara`` or an ``m:oMath`` that is its paragraph's only content."""
    if _local(omath) == "oMathPara":
        return True
    paragraph = omath.getparent()
    if paragraph is None or _local(paragraph) != "p":
        return False
    for child in paragraph:
        if child is omath or not isinstance(child.tag, str):
            continue
        name = _local(child)
        if name in ("pPr", "bookmarkStart", "bookmarkEnd", "proofErr"):
            continue
        if name == "oMath":
            return False
        if name == "r" and not "".join(t.text or "" for t in child.findall("w:t", NAMESPACES)).strip():
            continue
        return False
    return True
