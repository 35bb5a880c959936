from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

logger = logging.getLogger("buddy.knowledge")

LEGACY_RULE_NAMES = ("register", "kyc", "pan", "aadhaar", "documents", "tat")


@dataclass(frozen=True)
class Intent:
    name: str
    keywords: Tuple[str, ...] = ()
    synonyms: Tuple[str, ...] = ()
    response: str = ""
    suggested: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QuickIntent:
    name: str
    triggers: Tuple[str, ...]
    response: str
    suggested: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CannedReply:
    response: str
    suggested: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PageShortcut:
    name: str
    page: str
    message: str
    response: str
    suggested: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Flows:
    """Static conversation configuration, read-only at request time."""

    quick_intents: Tuple[QuickIntent, ...] = ()
    intents: Tuple[Intent, ...] = ()
    onboarding: Dict[str, CannedReply] = field(default_factory=dict)
    off_topic_terms: Tuple[str, ...] = ()
    off_topic_reply: str = ""
    advice_reply: str = ""
    advice_suggestions: Tuple[str, ...] = ()
    default_suggestions: Tuple[str, ...] = ()
    generic_suggestions: Tuple[str, ...] = ()
    page_shortcuts: Tuple[PageShortcut, ...] = ()
    fallback_message: str = "Sorry, I don't have that information."
    support_email: str = ""
    support_phone: str = ""


def _strs(val: Any) -> Tuple[str, ...]:
    if not isinstance(val, list):
        return ()
    return tuple(str(v) for v in val if isinstance(v, str) and v.strip())


def parse_flows(data: Dict[str, Any]) -> Flows:
    quick: List[QuickIntent] = []
    for i, row in enumerate(data.get("quick_intents") or []):
        if not isinstance(row, dict):
            continue
        triggers = _strs(row.get("triggers"))
        if not triggers or not row.get("response"):
            continue
        quick.append(QuickIntent(
            name=str(row.get("name") or f"quick_{i}"),
            triggers=triggers,
            response=str(row["response"]),
            suggested=_strs(row.get("suggested")),
        ))

    intents: List[Intent] = []
    # dict order is the configured order
    for name, row in (data.get("intents") or {}).items():
        if not isinstance(row, dict) or not row.get("response"):
            continue
        intents.append(Intent(
            name=str(name),
            keywords=_strs(row.get("keywords")),
            synonyms=_strs(row.get("synonyms")),
            response=str(row["response"]),
            suggested=_strs(row.get("suggested")),
        ))

    onboarding: Dict[str, CannedReply] = {}
    for name, row in (data.get("onboarding") or {}).items():
        if isinstance(row, str):
            onboarding[name] = CannedReply(response=row)
        elif isinstance(row, dict) and row.get("response"):
            onboarding[name] = CannedReply(response=str(row["response"]), suggested=_strs(row.get("suggested")))

    shortcuts: List[PageShortcut] = []
    for row in data.get("page_shortcuts") or []:
        if not isinstance(row, dict):
            continue
        if not (row.get("page") and row.get("message") and row.get("response")):
            continue
        shortcuts.append(PageShortcut(
            name=str(row.get("name") or row["page"]),
            page=str(row["page"]),
            message=str(row["message"]),
            response=str(row["response"]),
            suggested=_strs(row.get("suggested")),
        ))

    glob = data.get("global") or {}
    support = glob.get("support_block") or {}
    return Flows(
        quick_intents=tuple(quick),
        intents=tuple(intents),
        onboarding=onboarding,
        off_topic_terms=tuple(t.lower() for t in _strs(data.get("off_topic_terms"))),
        off_topic_reply=str(data.get("off_topic_reply") or ""),
        advice_reply=str(data.get("advice_reply") or ""),
        advice_suggestions=_strs(data.get("advice_suggestions")),
        default_suggestions=_strs(data.get("default_suggestions")),
        generic_suggestions=_strs(data.get("generic_suggestions")),
        page_shortcuts=tuple(shortcuts),
        fallback_message=str(glob.get("fallback_message") or "Sorry, I don't have that information."),
        support_email=str(support.get("email") or ""),
        support_phone=str(support.get("phone_primary") or ""),
    )


def load_flows(path: Path) -> Flows:
    flows = parse_flows(json.loads(Path(path).read_text(encoding="utf-8")))
    missing = [n for n in LEGACY_RULE_NAMES if n not in flows.onboarding]
    if missing:
        logger.warning(json.dumps({"event": "flows_missing_onboarding", "missing": missing, "path": str(path)}))
    logger.info(json.dumps({
        "event": "flows_loaded",
        "path": str(path),
        "quickIntents": len(flows.quick_intents),
        "intents": len(flows.intents),
        "pageShortcuts": len(flows.page_shortcuts),
    }))
    return flows
