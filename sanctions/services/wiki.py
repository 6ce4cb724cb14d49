"""
MediaWiki action API client.

Reads the posts of a Flow topic and the standing of their authors, and makes
the few edits the maintenance tasks need.
"""
from __future__ import annotations

import logging
from datetime import datetime, UTC
from typing import Dict, Iterable, List, Optional

import httpx

from config import WIKI_API_TIMEOUT, WIKI_API_URL
from sanctions.models import TopicPost, UserRef

logger = logging.getLogger(__name__)

USER_AGENT = "SanctionsBot/1.0 (community sanctions workflow)"


class WikiApiError(Exception):
    """The API answered with an error object."""

    def __init__(self, code: str, info: str = ""):
        super().__init__(f"{code}: {info}" if info else code)
        self.code = code
        self.info = info


def parse_wiki_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse either a 14-digit MediaWiki timestamp or an ISO 8601 one."""
    if not value:
        return None
    for fmt in ("%Y%m%d%H%M%S", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    logger.warning(f"Unrecognised wiki timestamp: {value}")
    return None


class WikiClient:
    def __init__(
        self,
        api_url: str = WIKI_API_URL,
        timeout: float = WIKI_API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": USER_AGENT},
        )

    async def __aenter__(self) -> "WikiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @staticmethod
    def _check(payload: Dict) -> Dict:
        error = payload.get("error")
        if error:
            raise WikiApiError(error.get("code", "unknown"), error.get("info", ""))
        return payload

    async def _get(self, params: Dict) -> Dict:
        params = {**params, "format": "json", "formatversion": 2}
        response = await self._client.get(self.api_url, params=params)
        response.raise_for_status()
        return self._check(response.json())

    async def _post(self, data: Dict) -> Dict:
        data = {**data, "format": "json", "formatversion": 2}
        response = await self._client.post(self.api_url, data=data)
        response.raise_for_status()
        return self._check(response.json())

    async def _token(self, kind: str = "csrf") -> str:
        payload = await self._get({"action": "query", "meta": "tokens", "type": kind})
        return payload["query"]["tokens"][f"{kind}token"]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_users(self, names: Iterable[str]) -> Dict[str, UserRef]:
        """Fetch account standing for the given users, keyed by lower-cased name."""
        unique: List[str] = []
        for name in names:
            if name and name not in unique:
                unique.append(name)
        if not unique:
            return {}

        users: Dict[str, UserRef] = {}
        # The API accepts at most 50 names per request
        for start in range(0, len(unique), 50):
            batch = unique[start:start + 50]
            payload = await self._get({
                "action": "query",
                "list": "users",
                "ususers": "|".join(batch),
                "usprop": "editcount|registration|blockinfo",
            })
            for entry in payload.get("query", {}).get("users", []):
                if entry.get("missing") or entry.get("invalid"):
                    continue
                user = UserRef(
                    name=entry["name"],
                    id=entry.get("userid"),
                    edit_count=entry.get("editcount") or 0,
                    registered_at=parse_wiki_timestamp(entry.get("registration")),
                    blocked="blockid" in entry,
                )
                users[user.name_lower] = user
        return users

    # ------------------------------------------------------------------
    # Flow topics
    # ------------------------------------------------------------------

    async def get_topic_posts(self, topic_id: str) -> List[TopicPost]:
        """
        All visible replies of a Flow topic, in thread order.

        The topic's root post is its title and is not returned. Authors carry
        their account standing so vote rights can be checked.
        """
        payload = await self._get({
            "action": "flow",
            "submodule": "view-topic",
            "page": f"Topic:{topic_id}",
            "vtformat": "wikitext",
        })

        # The payload looks like:
        #   {'flow': {'view-topic': {'result': {'topic': {
        #       'roots': ['<topic id>'],
        #       'posts': {'<post id>': ['<revision id>'], ...},
        #       'revisions': {'<revision id>': {
        #           'postId': ..., 'replies': ['<post id>', ...],
        #           'author': {'name': ..., 'id': ...},
        #           'timestamp': '20240101120000',
        #           'isModerated': False,
        #           'content': {'content': '...', 'format': 'wikitext'}}}}}}}
        topic = payload["flow"]["view-topic"]["result"]["topic"]
        posts_map = topic.get("posts", {})
        revisions = topic.get("revisions", {})

        collected: List[TopicPost] = []

        def walk(post_id: str, is_root: bool) -> None:
            for rev_id in posts_map.get(post_id, []):
                rev = revisions.get(rev_id)
                if not rev:
                    continue
                if not is_root and not rev.get("isModerated"):
                    timestamp = parse_wiki_timestamp(rev.get("timestamp"))
                    author = rev.get("author") or {}
                    if timestamp and author.get("name"):
                        collected.append(TopicPost(
                            post_id=post_id,
                            author=UserRef(name=author["name"], id=author.get("id")),
                            timestamp=timestamp,
                            content=(rev.get("content") or {}).get("content", ""),
                        ))
                for reply_id in rev.get("replies", []):
                    walk(reply_id, False)

        for root_id in topic.get("roots", []):
            walk(root_id, True)

        standing = await self.get_users(p.author.name for p in collected)
        for post in collected:
            known = standing.get(post.author.name_lower)
            if known is not None:
                post.author = known

        logger.debug(f"Topic {topic_id}: {len(collected)} post(s)")
        return collected

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> None:
        """Log in with a bot password; the session cookie is kept by the client."""
        token = await self._token("login")
        payload = await self._post({
            "action": "login",
            "lgname": username,
            "lgpassword": password,
            "lgtoken": token,
        })
        result = payload.get("login", {}).get("result")
        if result != "Success":
            raise WikiApiError("login-failed", payload.get("login", {}).get("reason", str(result)))
        logger.info(f"Logged in as {username}")

    async def page_exists(self, title: str) -> bool:
        payload = await self._get({"action": "query", "titles": title})
        pages = payload.get("query", {}).get("pages", [])
        return bool(pages) and not pages[0].get("missing", False)

    async def create_page(self, title: str, text: str, summary: str) -> bool:
        """Create a page; returns False if it already exists."""
        token = await self._token("csrf")
        try:
            await self._post({
                "action": "edit",
                "title": title,
                "text": text,
                "summary": summary,
                "createonly": 1,
                "bot": 1,
                "token": token,
            })
        except WikiApiError as e:
            if e.code == "articleexists":
                return False
            raise
        logger.info(f"Created page {title}")
        return True
