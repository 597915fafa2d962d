"""
Topic Keywords
==============

Keyword families shared by the rule-based relevance guard, the outage
detector and the duplicate detector, plus the significant-word tokenizer
used by text-match search.
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

TOPIC_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "windows_update": (
        "windows update", "оновлення windows", "оновлення віндовс", "update", "оновлен",
        "patch", "kb50", "перезавантаж",
    ),
    "printing": (
        "printer", "print", "toner", "cartridge", "paper jam", "принтер", "друк",
        "картридж", "тонер", "папір", "сканер", "scanner", "мфу",
    ),
    "network": (
        "network", "internet", "wifi", "wi-fi", "router", "lan cable", "ethernet", "vpn",
        "connection", "offline", "мереж", "інтернет", "роутер", "вайфай", "підключ",
        "зв'язк", "зв’язк", "немає зв", "не працює інтернет",
    ),
    "access": (
        "password", "login", "log in", "sign in", "account", "access", "locked",
        "пароль", "логін", "вхід", "доступ", "обліков", "заблок", "авториз",
    ),
    "email": (
        "email", "e-mail", "mail", "outlook", "inbox", "пошт", "лист",
    ),
    "hardware": (
        "monitor", "keyboard", "mouse", "computer", "laptop", "power", "screen",
        "монітор", "клавіатур", "миша", "мишк", "комп'ютер", "комп’ютер", "ноутбук",
        "живлен", "екран", "не вмикається",
    ),
    "software": (
        "program", "application", "install", "crash", "error", "iiko",
        "програм", "застосун", "встанов", "помилк", "вилітає", "зависає",
    ),
    "performance": (
        "slow", "lagging", "freeze", "hangs", "performance", "повільно", "гальмує",
        "тормозить", "зависа", "швидкод",
    ),
}

NETWORK_TOPIC = "network"

STOP_WORDS: FrozenSet[str] = frozenset({
    # English
    "the", "and", "for", "with", "that", "this", "have", "has", "not", "does",
    "doesn't", "dont", "don't", "from", "what", "when", "where", "there", "help",
    "please", "work", "working", "can't", "cannot", "into", "your", "about",
    # Ukrainian
    "не", "на", "що", "як", "для", "мене", "мені", "який", "яка", "яке", "коли",
    "працює", "будь", "ласка", "допоможіть", "потрібно", "треба", "дуже", "також",
    "після", "через", "вже", "ще", "може", "його", "вона", "вони", "цей", "тому",
})

_TOKEN_PATTERN = re.compile(r"[\w'’-]+", re.UNICODE)


def normalize(text: Optional[str]) -> str:
    return " ".join((text or "").lower().split())


def significant_words(text: Optional[str], min_length: int = 4) -> List[str]:
    """Distinct lower-case tokens worth matching on, in first-seen order."""
    seen: Set[str] = set()
    words: List[str] = []
    for token in _TOKEN_PATTERN.findall(normalize(text)):
        token = token.strip("-'’")
        if len(token) < min_length or token in STOP_WORDS or token.isdigit():
            continue
        if token not in seen:
            seen.add(token)
            words.append(token)
    return words


def detect_topics(text: Optional[str]) -> FrozenSet[str]:
    """Topic families whose keywords (longer than 2 chars) occur in the text."""
    lowered = normalize(text)
    found = set()
    for topic, keywords in TOPIC_KEYWORDS.items():
        for keyword in keywords:
            if len(keyword) > 2 and keyword in lowered:
                found.add(topic)
                break
    return frozenset(found)


def mentions_network(text: Optional[str]) -> bool:
    return NETWORK_TOPIC in detect_topics(text)


@dataclass(frozen=True)
class TopicVerdict:
    relevant: bool
    reason: str


def topic_guard(query: str, candidate_text: str) -> TopicVerdict:
    """
    Cheap, model-free relevance check.

    Relevant when either side has no recognizable topic, or when the two
    topic sets overlap.
    """
    query_topics = detect_topics(query)
    candidate_topics = detect_topics(candidate_text)
    if not query_topics or not candidate_topics:
        return TopicVerdict(True, "no_topic_signal")
    shared = query_topics & candidate_topics
    if shared:
        return TopicVerdict(True, "topic_overlap:" + ",".join(sorted(shared)))
    return TopicVerdict(
        False,
        f"topic_mismatch:{','.join(sorted(query_topics))}!={','.join(sorted(candidate_topics))}",
    )
