import re
from dataclasses import dataclass
from typing import Optional

from amana.services.matching import PatternRule, compile_patterns, first_match
from amana.services.replies import ReplyChooser

# Ordered by locale; the first locale whose patterns match wins.
COMPLIMENT_RULES: tuple[PatternRule[str], ...] = (
    PatternRule(
        "en",
        compile_patterns(
            r"^(thanks?|thank you|tysm|thx)(\s+so\s+much)?[!.]*$",
            r"^(you'?re?\s*)?(great|awesome|amazing|excellent|brilliant|fantastic|wonderful|perfect|good job|well done|nice|cool)[!.]*$",
            r"^(i\s*)?(appreciate|love)\s*(it|this|that|you)[!.]*$",
            r"^good\s*work[!.]*$",
            r"^impressive[!.]*$",
            r"^(exactly|perfect|spot on)[!.]*$",
        ),
    ),
    PatternRule(
        "pidgin",
        compile_patterns(
            r"^(abeg|thank you|tanks|tenks)(\s+o)?[!.]*$",
            r"^(na\s*wa|e\s*choke|correct|sharp|you\s*try|well\s*done)[!.]*$",
            r"^(i\s*dey\s*feel|i\s*like)\s*am[!.]*$",
            r"^(you\s*too\s*much|you\s*good)[!.]*$",
            r"^(e\s*sweet\s*me|e\s*enter)[!.]*$",
        ),
    ),
    PatternRule("ha", compile_patterns(r"^(na\s*gode|madalla|kai|wallahi)[!.]*$", r"^(ka\s*yi\s*kyau)[!.]*$")),
    PatternRule("ig", compile_patterns(r"^(daalụ|daalu|imeela|ndewo)[!.]*$", r"^(ọ\s*maka|o\s*maka|ezigbo)[!.]*$")),
    PatternRule("yo", compile_patterns(r"^(e\s*se|o\s*dabo|a\s*dupe)[!.]*$", r"^(o\s*dara)[!.]*$")),
)

COMPLIMENT_REPLIES: dict[str, dict[str, tuple[str, ...]]] = {
    "en": {
        "low": (
            "You're welcome! Happy to help. 😊",
            "Glad I could help! Let me know if you need anything else.",
            "My pleasure! What else can I do for you?",
        ),
        "medium": (
            "Thank you! I'm here whenever you need me! 🙌",
            "Appreciate that! Always happy to help! 😄",
            "You're too kind! Let's keep getting things done! 💪",
        ),
        "high": (
            "WOW, thank you so much! That means a lot! 🤩🎉",
            "You just made my day! Let's keep crushing it! 🚀✨",
            "SO GLAD you're happy! I'm always here for you! 💯🔥",
        ),
    },
    "pidgin": {
        "low": (
            "No wahala! I dey for you. 😊",
            "E don do! Anytime you need me, just shout.",
            "My pleasure! Wetin else I fit do?",
        ),
        "medium": (
            "Thank you o! I dey kampe for you! 🙌",
            "You too much! I dey always available! 😄",
            "E choke! Make we continue to dey work together! 💪",
        ),
        "high": (
            "CHAI! You don make my day! 🤩🎉",
            "E SWEET ME DIE! Make we continue like this! 🚀✨",
            "YOU TOO GOOD! I go always dey for you! 💯🔥",
        ),
    },
    "ha": {
        "low": ("Madalla! Na taimake ku. 😊", "Ba komai! Koyaushe ina nan.", "Na gode! Me zan iya yi?"),
        "medium": ("Na gode sosai! Ina nan kullum! 🙌", "Allah ya saka! Ina farin ciki! 😄", "Kai! Mu ci gaba da aiki! 💪"),
        "high": ("WALLAHI! Ka faranta mini rai! 🤩🎉", "KA YI KYAU SOSAI! Mu ci gaba! 🚀✨", "MADALLA! Ina tare da kai! 💯🔥"),
    },
    "ig": {
        "low": ("Daalụ! M nọ ebe a. 😊", "Ọ dị mma! Kpọọ m mgbe ọ bụla.", "Ezigbo! Gịnị ka m ga-eme?"),
        "medium": (
            "Daalụ nke ukwuu! M nọ mgbe niile! 🙌",
            "Ọ na-atọ m ụtọ! Anọ m ebe a! 😄",
            "Ọ maka! Ka anyị gaa n'ihu! 💪",
        ),
        "high": (
            "CHINEKE! I mere m obi ụtọ! 🤩🎉",
            "Ọ MARA MMA NKE UKWUU! Ka anyị gaa n'ihu! 🚀✨",
            "EZIGBO! M nọnyere gị mgbe niile! 💯🔥",
        ),
    },
    "yo": {
        "low": ("E se! Mo wa nibi. 😊", "O dara! Pe mi nigbakugba.", "O dara! Kini mo le se?"),
        "medium": ("E se pupo! Mo wa nigbagbogbo! 🙌", "O wu mi lori! Mo wa fun e! 😄", "O dara! Je ka tesiwaju! 💪"),
        "high": ("OLORUN! O mu mi dun! 🤩🎉", "O DARA PUPỌ! Je ka tesiwaju! 🚀✨", "O DARA GAN! Mo wa pelu re! 💯🔥"),
    },
}


@dataclass
class Compliment:
    locale: str
    enthusiasm: str  # low, medium, high


def enthusiasm_level(text: str) -> str:
    """Exclamation marks and the share of capital letters decide the level."""
    if not text:
        return "low"
    exclamations = text.count("!")
    caps_ratio = len(re.findall(r"[A-Z]", text)) / len(text)
    if exclamations >= 2 or caps_ratio > 0.5:
        return "high"
    if exclamations >= 1 or caps_ratio > 0.2:
        return "medium"
    return "low"


def detect_compliment(text: str) -> Optional[Compliment]:
    # Trailing punctuation is part of the patterns, so only casefold and trim here.
    lowered = (text or "").strip().casefold()
    locale = first_match(COMPLIMENT_RULES, lowered)
    if locale is None:
        return None
    return Compliment(locale=locale, enthusiasm=enthusiasm_level(text.strip()))


def compliment_reply(compliment: Compliment, chooser: ReplyChooser) -> str:
    by_level = COMPLIMENT_REPLIES.get(compliment.locale, COMPLIMENT_REPLIES["en"])
    return chooser.choose(by_level[compliment.enthusiasm])
