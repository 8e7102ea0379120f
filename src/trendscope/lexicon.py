"""Default keyword tables; any of them can be overridden from the engine YAML."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# ── Quality gates ──────────────────────────────────────────────────────────
BLOCKLIST: list[str] = [
    # generic political terms
    "politics", "political", "government", "democracy", "freedom", "liberty",
    "america", "american", "united states", "usa", "congress", "senate", "house",
    "republican", "democrat", "conservative", "liberal", "progressive",
    # generic news terms
    "breaking", "news", "update", "report", "latest", "today", "new",
    "says", "said", "announces", "announced", "confirms", "confirmed",
    # filler
    "people", "time", "year", "years", "day", "days", "week", "weeks",
    "first", "last", "next", "more", "most", "many", "some", "other",
    "claims", "calls", "called", "asks", "asked",
    # social noise
    "thread", "post", "tweet", "retweet", "share", "like", "comment",
    # low-value formats
    "watch", "video", "photo", "image", "live", "opinion", "editorial",
]

# Acronyms that collide with common words; they need a context keyword.
AMBIGUOUS_TERMS: dict[str, list[str]] = {
    "us": ["united states", "american", "federal", "washington", "white house"],
    "uk": ["britain", "british", "london", "parliament", "starmer"],
    "eu": ["european", "brussels", "commission", "member states"],
    "un": ["united nations", "security council", "general assembly"],
    "ice": ["immigration", "deport", "deportation", "detention", "agents", "raid", "customs"],
    "mlk": ["martin luther king", "civil rights"],
}

ALLOWED_SINGLE_WORD_ENTITIES: list[str] = [
    "nato", "fbi", "cia", "doj", "dhs", "epa", "fda", "cdc",
    "nsa", "irs", "sec", "ftc", "fcc", "fec", "osha",
    "scotus", "potus", "hamas", "hezbollah", "isis",
]

# ── Evergreen ──────────────────────────────────────────────────────────────
EVERGREEN_ENTITIES: list[str] = [
    "trump", "biden", "harris", "obama", "pelosi", "mcconnell", "schumer",
    "musk", "putin", "netanyahu", "zelensky", "xi jinping", "vance", "walz",
    "white house", "pentagon", "state department", "justice department",
    "congress", "senate", "house", "supreme court", "capitol",
    "gaza", "israel", "ukraine", "russia", "china", "taiwan", "iran",
    "greenland", "nato", "eu", "european union", "middle east", "west bank",
    "immigration", "border", "economy", "inflation", "healthcare", "climate",
    "taxes", "election", "campaign", "poll", "polls", "voter", "voting",
    "tariffs", "trade", "democracy", "freedom", "abortion", "gun", "guns",
]

# ── Labels ─────────────────────────────────────────────────────────────────
ALIASES: dict[str, str] = {
    "eu": "european union",
    "usa": "united states",
    "uk": "united kingdom",
    "un": "united nations",
    "gop": "republican party",
    "scotus": "supreme court",
    "potus": "president",
    "doj": "justice department",
}

STOPWORDS: list[str] = [
    "a", "an", "the", "of", "by", "to", "in", "on", "at", "for", "and", "or",
    "with", "from", "as", "is", "are", "was", "were", "be", "been", "its", "it",
    "over", "after", "amid", "into", "about",
]

EVENT_VERBS: list[str] = [
    # legislative
    "vote", "votes", "voted", "voting", "pass", "passes", "passed", "passing",
    "block", "blocks", "blocked", "reject", "rejects", "rejected",
    "approve", "approves", "approved", "sign", "signs", "signed",
    "veto", "vetoes", "vetoed", "review", "reviews", "reviewed",
    # executive
    "fire", "fires", "fired", "firing", "resign", "resigns", "resigned",
    "nominate", "nominates", "nominated", "appoint", "appoints", "appointed",
    "order", "orders", "ordered", "pardon", "pardons", "pardoned",
    "revoke", "revokes", "revoked",
    # judicial
    "rule", "rules", "ruled", "overturn", "overturns", "overturned",
    "uphold", "upholds", "upheld", "strike", "strikes", "struck",
    "dismiss", "dismisses", "dismissed", "deny", "denies", "denied",
    # enforcement
    "arrest", "arrests", "arrested", "indict", "indicts", "indicted",
    "sue", "sues", "sued", "charge", "charges", "charged",
    "convict", "convicts", "convicted", "sentence", "sentenced",
    "raid", "raids", "raided", "deport", "deports", "deported",
    "detain", "detains", "detained",
    # policy and diplomacy
    "launch", "launches", "launched", "ban", "bans", "banned",
    "sanction", "sanctioned", "threaten", "threatens", "threatened",
    "warn", "warns", "warned", "propose", "proposes", "proposed",
    "withdraw", "withdraws", "withdrew", "suspend", "suspends", "suspended",
    "expand", "expands", "expanded", "cut", "cuts",
    # conflict and economy
    "attack", "attacks", "attacked", "invade", "invades", "invaded",
    "bomb", "bombs", "bombed", "collapse", "collapses", "collapsed",
    "halt", "halts", "halted", "escalate", "escalates", "escalated",
    "raise", "raises", "raised", "surge", "surges", "surged",
    "win", "wins", "won", "lose", "loses", "lost", "defeat", "defeats", "defeated",
    "release", "releases", "released", "reveal", "reveals", "revealed",
    "kill", "kills", "killed", "end", "ends", "ended",
]

EVENT_NOUNS: list[str] = [
    "ruling", "trial", "hearing", "verdict", "indictment", "conviction",
    "lawsuit", "injunction", "subpoena", "testimony", "sentencing",
    "bill", "election", "impeachment", "nomination", "confirmation",
    "filibuster", "shutdown", "debate", "speech", "summit", "rally", "resignation",
    "shooting", "protest", "crisis", "scandal", "bombing", "strike",
    "ceasefire", "invasion", "evacuation", "explosion", "assassination",
    "sanctions", "tariffs", "investigation", "probe", "audit", "deportation",
    "mandate", "regulation", "reform",
]

# ── Policy domains ─────────────────────────────────────────────────────────
DOMAIN_KEYWORDS: dict[str, list[str]] = {
    "Healthcare": [
        "medicare", "medicaid", "affordable care act", "obamacare", "health insurance",
        "prescription drugs", "drug prices", "hospital", "mental health", "vaccine",
        "public health", "pandemic", "fda", "cdc", "nih", "insulin prices",
    ],
    "Environment": [
        "climate change", "global warming", "renewable energy", "fossil fuels",
        "pipeline", "carbon emissions", "epa", "pollution", "clean energy",
        "wildfire", "drought", "hurricane", "emissions", "offshore drilling",
    ],
    "Labor & Workers Rights": [
        "union", "labor", "workers", "minimum wage", "collective bargaining", "nlrb",
        "paid leave", "workplace safety", "osha", "picket line", "unionize",
    ],
    "Immigration": [
        "immigration", "border", "migrants", "refugees", "asylum", "daca",
        "deportation", "sanctuary city", "visa", "green card", "citizenship",
        "undocumented", "border wall", "cbp", "uscis",
    ],
    "Civil Rights": [
        "civil rights", "discrimination", "equality", "racial justice", "lgbtq",
        "transgender", "hate crime", "affirmative action", "title ix",
        "religious freedom", "free speech", "disability rights", "aclu", "naacp",
    ],
    "Criminal Justice": [
        "prison reform", "mass incarceration", "bail reform", "police",
        "qualified immunity", "death penalty", "sentencing", "parole",
        "wrongful conviction", "police brutality", "fbi", "atf", "dea",
    ],
    "Voting Rights": [
        "voting rights", "voter suppression", "gerrymandering", "voter id",
        "mail-in ballot", "polling place", "election integrity", "redistricting",
        "ballot access", "voter registration",
    ],
    "Education": [
        "education", "student loans", "student debt", "public schools", "teachers",
        "charter schools", "school choice", "department of education", "tuition",
        "school board", "curriculum",
    ],
    "Housing": [
        "housing", "affordable housing", "rent", "eviction", "homelessness",
        "mortgage", "zoning", "hud", "public housing", "tenant",
    ],
    "Economic Justice": [
        "inflation", "wages", "poverty", "income inequality", "wealth tax",
        "tax cuts", "social security", "snap", "food stamps", "cost of living",
        "federal reserve", "interest rates", "recession", "tariffs",
    ],
    "Foreign Policy": [
        "foreign policy", "nato", "united nations", "sanctions", "diplomacy",
        "ukraine", "russia", "china", "israel", "gaza", "iran", "ceasefire",
        "foreign aid", "state department", "greenland", "european union",
    ],
    "Technology": [
        "artificial intelligence", "ai", "big tech", "antitrust", "data privacy",
        "social media", "cybersecurity", "net neutrality", "section 230",
        "broadband", "surveillance", "algorithm",
    ],
}

# Default topics per org type, used as a cold-start interest signal.
ORG_TYPE_TOPICS: dict[str, list[str]] = {
    "foreign_policy": ["Foreign Policy", "Immigration"],
    "human_rights": ["Civil Rights", "Immigration", "Criminal Justice"],
    "candidate": ["Voting Rights", "Economic Justice", "Healthcare"],
    "labor": ["Labor & Workers Rights", "Economic Justice"],
    "climate": ["Environment"],
    "civil_rights": ["Civil Rights", "Voting Rights", "Criminal Justice"],
}

# ── URLs ───────────────────────────────────────────────────────────────────
TRACKING_PARAMS: list[str] = [
    "ref", "ref_src", "ref_url", "fbclid", "gclid", "dclid", "msclkid",
    "mc_cid", "mc_eid", "igshid", "ocid", "cmpid", "smid", "smtyp", "src",
    "cid", "_ga", "yclid", "spm", "share", "s", "taid",
]

TRACKING_PREFIXES: list[str] = ["utm_", "pk_", "hsa_"]

# Redirect wrapper host → query parameters that may hold the target URL.
REDIRECT_HOSTS: dict[str, list[str]] = {
    "news.google.com": ["url"],
    "google.com": ["url", "q"],
    "l.facebook.com": ["u"],
    "lm.facebook.com": ["u"],
    "t.co": [],
    "feedproxy.google.com": [],
    "apple.news": [],
    "out.reddit.com": ["url"],
}


def load_lines(path: Path) -> list[str]:
    """Read a keyword file: one entry per line, blanks and ``#`` comments skipped."""
    if not path.exists():
        logger.warning("Keyword file not found: %s", path)
        return []
    lines: list[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            lines.append(stripped.lower())
    return lines
