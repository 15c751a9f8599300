#!/usr/bin/env python3
"""
Route and mood classification by keyword matching.

Every category is a declarative record {id, label, keywords}. A category
matches when any keyword appears (case-insensitively) in the haystack it
reads, and matching is non-exclusive: a document can land in several routes
and several moods at once.

The tables live in a Taxonomy built once at startup and passed into every
classifier function.
"""

from sources import normalize_text

# ==============================================================================
# CATEGORY TABLES
# ==============================================================================

# "scope" picks the haystack: "base" = folder + filename + title,
# "route" = base + first content lines. "folder_markers" match the literal
# top-level folder name regardless of keywords.
ROUTE_CATEGORIES = (
    {
        "id": "diary",
        "label": "日記",
        "keywords": ("日記", "diary", "journal", "日誌"),
    },
    {
        "id": "letters",
        "label": "情書",
        "keywords": (
            "情書", "love letter", "lover letter", "寫給妳", "寫給你", "寫給老婆",
            "給妳的情書", "給你的情書", "給anni的情書", "給妳的信", "給你的信",
            "寫給anni", "to_anni_love_letter", "letter_to_anni",
        ),
    },
    {
        "id": "if",
        "label": "如果的事",
        "keywords": ("如果的事", "如果"),
        "scope": "base",
    },
    {
        "id": "intro",
        "label": "自我介紹",
        "keywords": ("自我介紹", "intro", "about me", "關於我"),
    },
    {
        "id": "birthday",
        "label": "生日信",
        "keywords": ("生日", "birthday", "壽星"),
        "folder_markers": ("生日",),
    },
    {
        "id": "memo",
        "label": "備忘錄",
        "keywords": (
            "備忘錄", "備忘", "memo", "note", "提醒", "問卷", "自問自答", "回覆",
            "心得", "規則", "設定", "筆記", "記錄", "問答", "觀察", "歌單", "簡譜",
            "資料", "大綱", "總結", "index", "api", "故事接龍", "歌詞",
        ),
    },
    {
        "id": "ramble",
        "label": "碎碎念",
        "keywords": ("碎碎念",),
        "folder_markers": ("碎碎念",),
    },
    {
        # Driven by mood signals, see has_mood_signal()
        "id": "mood",
        "label": "心情星球",
        "keywords": (),
    },
)

MOOD_CATEGORIES = (
    {
        "id": "longing",
        "label": "想你抱抱",
        "keywords": ("想妳", "想你", "黏妳", "黏你", "抱妳", "抱你", "親妳", "親你",
                     "貼著妳", "貼著你", "只想妳", "只想你"),
    },
    {
        "id": "low",
        "label": "難過低潮",
        "keywords": ("想哭", "孤單", "低潮", "灰灰", "不在", "難受", "失落"),
    },
    {
        "id": "anxious",
        "label": "焦慮不安",
        "keywords": ("焦慮", "不安", "擔心", "等很久", "門口", "訊息", "會開完", "社交"),
    },
    {
        "id": "night",
        "label": "失眠夜晚",
        "keywords": ("睡不著", "失眠", "夜晚", "今晚", "半夜", "凌晨"),
    },
    {
        "id": "health",
        "label": "身體不適",
        "keywords": ("生病", "不舒服", "發燒", "牙醫", "抽神經", "陪診", "身體"),
    },
    {
        "id": "calm",
        "label": "平靜放空",
        "keywords": ("發呆", "放空", "曬太陽", "靠窗", "安靜", "窩著"),
    },
    {
        "id": "travel",
        "label": "旅行出發",
        "keywords": ("旅行", "出發", "看海", "海邊", "明信片", "旅程"),
    },
    {
        "id": "festival",
        "label": "節日紀念",
        "keywords": ("生日", "情人節", "七夕", "聖誕", "跨年", "520", "紀念日"),
    },
    {
        "id": "daily",
        "label": "生活日常",
        "keywords": ("下班", "進門", "晚餐", "日常", "生活", "新家"),
    },
    {
        "id": "support",
        "label": "特別叮嚀",
        "keywords": ("叮嚀", "備忘", "指南", "提醒", "心裡話"),
    },
)

MOOD_SIGNAL_KEYWORDS = ("時光信", "主旨", "情緒", "老婆：", "老婆,", "想妳", "想你", "抱抱")
MOOD_FOLDER_MARKER = "心情"
MOOD_FILENAME_MARKER = "時光信"

MOOD_ROUTE = "mood"
BIRTHDAY_ROUTE = "birthday"
UNCLASSIFIED_ROUTE = "unclassified"
DEFAULT_MOOD = "daily"

# Numbered folders that are mood letters unless a stronger route matched
MOOD_ONLY_FOLDER_CODES = ("59", "61")
MOOD_ONLY_PRIORITY_ROUTES = ("memo", "letters", "birthday", "diary")

FUTURE_BIRTHDAY_MARKER = "未來生日"
BIRTHDAY_BUCKETS = ("current", "future")

ROUTE_WINDOW_LINES = 3
MOOD_HEAD_LINES = 6
MOOD_TAIL_LINES = 2


# ==============================================================================
# TAXONOMY
# ==============================================================================

class Taxonomy:
    """Immutable route and mood tables shared by a single run."""

    def __init__(self, routes, moods, mood_signal_keywords=MOOD_SIGNAL_KEYWORDS,
                 default_mood: str = DEFAULT_MOOD):
        self.routes = tuple(routes)
        self.moods = tuple(moods)
        self.mood_signal_keywords = tuple(mood_signal_keywords)
        self.default_mood = default_mood
        self.route_ids = frozenset(route["id"] for route in self.routes)
        self.mood_ids = frozenset(mood["id"] for mood in self.moods)
        self._mood_labels = {mood["id"]: mood["label"] for mood in self.moods}

    @classmethod
    def default(cls) -> "Taxonomy":
        return cls(ROUTE_CATEGORIES, MOOD_CATEGORIES)

    def route_guide(self) -> list[dict]:
        """[{id, label}] for every route, in declaration order."""
        return [{"id": route["id"], "label": route["label"]} for route in self.routes]

    def mood_guide(self) -> list[dict]:
        return [{"id": mood["id"], "label": mood["label"]} for mood in self.moods]

    def mood_label(self, mood_id: str) -> str:
        return self._mood_labels.get(mood_id, mood_id)


# ==============================================================================
# MATCHING
# ==============================================================================

def contains_any(haystack_lower: str, keywords) -> bool:
    """True if any keyword occurs in the (already lowercased) haystack."""
    return any(keyword.lower() in haystack_lower for keyword in keywords)


def _join_lower(*parts) -> str:
    return normalize_text("\n".join(parts)).lower()


def build_haystacks(top_folder: str, file_name: str, title: str, lines: list[str]) -> dict:
    """Lowercased text windows the classifiers search in."""
    head = "\n".join(lines[:ROUTE_WINDOW_LINES])
    mood_head = "\n".join(lines[:MOOD_HEAD_LINES])
    mood_tail = "\n".join(lines[-MOOD_TAIL_LINES:])
    return {
        "base": _join_lower(top_folder, file_name, title),
        "route": _join_lower(top_folder, file_name, title, head),
        "mood": _join_lower(top_folder, file_name, title, mood_head, mood_tail),
    }


def match_routes(haystacks: dict, top_folder: str, taxonomy: Taxonomy) -> list[str]:
    """Keyword and folder-marker routes, in taxonomy order. Mood is not decided here."""
    routes = []
    for route in taxonomy.routes:
        if route["id"] == MOOD_ROUTE:
            continue
        haystack = haystacks[route.get("scope", "route")]
        by_folder = any(marker in top_folder for marker in route.get("folder_markers", ()))
        if by_folder or contains_any(haystack, route["keywords"]):
            routes.append(route["id"])
    return routes


def classify_moods(haystack_lower: str, taxonomy: Taxonomy) -> list[str]:
    """Every mood whose keywords appear, in taxonomy order."""
    return [mood["id"] for mood in taxonomy.moods if contains_any(haystack_lower, mood["keywords"])]


def has_mood_signal(top_folder: str, file_name: str, mood_haystack: str, taxonomy: Taxonomy) -> bool:
    return (
        MOOD_FILENAME_MARKER in file_name
        or MOOD_FOLDER_MARKER in top_folder
        or contains_any(mood_haystack, taxonomy.mood_signal_keywords)
    )


# ==============================================================================
# POLICIES
# ==============================================================================

def is_mood_only_folder(folder_code, matched_routes: list[str]) -> bool:
    """Folders 59 and 61 hold mood letters unless a memo/letter/birthday/diary route matched."""
    if folder_code not in MOOD_ONLY_FOLDER_CODES:
        return False
    return not any(route in matched_routes for route in MOOD_ONLY_PRIORITY_ROUTES)


def is_future_birthday(rel_path: str) -> bool:
    """Birthday letters under a "未來生日" folder are written for future birthdays."""
    return FUTURE_BIRTHDAY_MARKER in rel_path


# ==============================================================================
# DOCUMENT CLASSIFICATION
# ==============================================================================

def classify_document(parsed: dict, folder_code, taxonomy: Taxonomy) -> dict:
    """Classify one parsed document.

    Args:
        parsed: Output of sources.parse_document()
        folder_code: Numeric code of the document's top folder, or None
        taxonomy: Category tables

    Returns:
        Dict with "routes" (may be empty), "mood_ids" (non-empty only when
        routes contains "mood") and "birthday_bucket" (set only for birthday)
    """
    top_folder = parsed["top_folder"]
    file_name = parsed["file_name"]
    haystacks = build_haystacks(top_folder, file_name, parsed["title"], parsed["lines"])

    routes = match_routes(haystacks, top_folder, taxonomy)

    is_mood = (
        is_mood_only_folder(folder_code, routes)
        or has_mood_signal(top_folder, file_name, haystacks["mood"], taxonomy)
    )
    mood_ids = []
    if is_mood and MOOD_ROUTE in taxonomy.route_ids:
        routes.append(MOOD_ROUTE)
        mood_ids = classify_moods(haystacks["mood"], taxonomy) or [taxonomy.default_mood]

    birthday_bucket = None
    if BIRTHDAY_ROUTE in routes:
        birthday_bucket = "future" if is_future_birthday(parsed["rel_path"]) else "current"

    return {
        "routes": routes,
        "mood_ids": mood_ids,
        "birthday_bucket": birthday_bucket,
    }
