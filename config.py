"""
Configuration for the Sanctions workflow
Loaded from environment variables (a local .env file is honoured).
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ============================================================================
# WIKI CONNECTION
# ============================================================================
WIKI_API_URL = os.getenv("WIKI_API_URL", "https://femiwiki.com/api.php")
WIKI_ARTICLE_PATH = os.getenv("WIKI_ARTICLE_PATH", "/w/$1")
WIKI_API_TIMEOUT = float(os.getenv("WIKI_API_TIMEOUT", "15"))

# Bot password credentials, only needed by maintenance tasks that edit pages
BOT_USERNAME = os.getenv("BOT_USERNAME", "")
BOT_PASSWORD = os.getenv("BOT_PASSWORD", "")

# ============================================================================
# STORAGE
# ============================================================================
DB_PATH = os.getenv("SANCTIONS_DB_PATH", "sanctions.db")

# Name of a logging level, e.g. DEBUG or WARNING
LOG_LEVEL = os.getenv("SANCTIONS_LOG_LEVEL", "INFO").upper()

# ============================================================================
# MESSAGES (content language)
# ============================================================================
# Display name of the account that performs automatic sanction edits.
# Notifications and emails caused by this account are suppressed.
SANCTIONS_BOT_NAME = os.getenv("SANCTIONS_BOT_NAME", "제재 봇")

# Flow board holding every sanction topic
DISCUSSION_PAGE_NAME = os.getenv("SANCTIONS_DISCUSSION_PAGE_NAME", "페미위키토론:제재안에 대한 의결")
SPECIAL_PAGE_NAME = os.getenv("SANCTIONS_SPECIAL_PAGE_NAME", "특수:제재안목록")

AGREE_TEMPLATE_TITLE = os.getenv("SANCTIONS_AGREE_TEMPLATE", "찬성")
DISAGREE_TEMPLATE_TITLE = os.getenv("SANCTIONS_DISAGREE_TEMPLATE", "반대")
INSULTING_NAME_TOPIC_TITLE = os.getenv("SANCTIONS_INSULTING_NAME_TOPIC_TITLE", "부적절한 사용자명")

# Days; Agree votes asking for a longer block are clamped to this
MAX_BLOCK_PERIOD = int(os.getenv("SANCTIONS_MAX_BLOCK_PERIOD", "100"))

# Link labels
LINK_ON_USER_TOOL = os.getenv("SANCTIONS_LINK_ON_USER_TOOL", "제재 절차")
LINK_ON_DIFF = os.getenv("SANCTIONS_LINK_ON_DIFF", "이 편집을 근거로 제재안 발의")
LINK_ON_HISTORY = os.getenv("SANCTIONS_LINK_ON_HISTORY", "제재안 발의")
LINK_ON_USER_PAGE = os.getenv("SANCTIONS_LINK_ON_USER_PAGE", "제재안 목록")
LINK_ON_USER_CONTRIBUTES = os.getenv("SANCTIONS_LINK_ON_USER_CONTRIBUTES", "제재")

# ============================================================================
# VOTING
# ============================================================================
VOTING_PERIOD_DAYS = int(os.getenv("SANCTIONS_VOTING_PERIOD_DAYS", "5"))

# Account standing required to vote on (and to propose) sanctions
VOTE_MIN_EDIT_COUNT = int(os.getenv("SANCTIONS_VOTE_MIN_EDIT_COUNT", "3"))
VOTE_MIN_ACCOUNT_AGE_DAYS = int(os.getenv("SANCTIONS_VOTE_MIN_ACCOUNT_AGE_DAYS", "20"))

# ============================================================================
# PLATFORM SETTINGS MIRRORED FROM THE WIKI
# ============================================================================
ENOTIF_WATCHLIST = os.getenv("ENOTIF_WATCHLIST", "false").lower() == "true"
SHOW_UPDATED_MARKER = os.getenv("SHOW_UPDATED_MARKER", "true").lower() == "true"

# Content model of Flow boards
CONTENT_MODEL_FLOW_BOARD = "flow-board"

# Front-end modules added to sanction pages
FLOW_BOARD_MODULE = "ext.sanctions.flow-board"
FLOW_TOPIC_MODULE = "ext.sanctions.flow-topic"

# Wikitext of the vote templates created on install
AGREE_TEMPLATE_TEXT = os.getenv(
    "SANCTIONS_AGREE_TEMPLATE_TEXT",
    "'''찬성'''{{#if:{{{1|}}}|, {{{1}}}일}}<noinclude>[[분류:제재 틀]]</noinclude>",
)
DISAGREE_TEMPLATE_TEXT = os.getenv(
    "SANCTIONS_DISAGREE_TEMPLATE_TEXT",
    "'''반대'''<noinclude>[[분류:제재 틀]]</noinclude>",
)
