"""List view state: filters and todos marked for deletion.

Filters travel in the query string. Marks live in the signed session cookie
and are only turned into real deletes when the user confirms; refetching the
list must not lose them.
"""
from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping, Optional
from urllib.parse import urlencode

SESSION_KEY = "board"


def parse_done(value: Optional[str]) -> Optional[bool]:
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def parse_tags(value: Optional[str]) -> list[str]:
    if not value:
        return []
    tags = []
    for raw in value.split(","):
        tag = raw.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


@dataclass(frozen=True)
class TodoFilters:
    tags: tuple[str, ...] = ()
    done: Optional[bool] = None
    q: Optional[str] = None

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "TodoFilters":
        q = (params.get("q") or "").strip() or None
        return cls(tags=tuple(parse_tags(params.get("tags"))), done=parse_done(params.get("done")), q=q)

    @property
    def is_empty(self) -> bool:
        return not self.tags and self.done is None and not self.q

    def to_query(self) -> dict[str, str]:
        params = {}
        if self.tags:
            params["tags"] = ",".join(self.tags)
        if self.done is not None:
            params["done"] = "true" if self.done else "false"
        if self.q:
            params["q"] = self.q
        return params

    def url(self, path: str = "/") -> str:
        query = urlencode(self.to_query())
        return f"{path}?{query}" if query else path

    def toggle_tag(self, tag: str) -> "TodoFilters":
        if tag in self.tags:
            return self.remove_tag(tag)
        return replace(self, tags=self.tags + (tag,))

    def remove_tag(self, tag: str) -> "TodoFilters":
        return replace(self, tags=tuple(t for t in self.tags if t != tag))

    def cycle_done(self) -> "TodoFilters":
        # all -> done only -> not done only -> all
        nxt = True if self.done is None else (False if self.done else None)
        return replace(self, done=nxt)

    def matches_tags(self, tags: Iterable[str]) -> bool:
        if not self.tags:
            return True
        return bool(set(self.tags).intersection(tags))


@dataclass
class Board:
    marked: list[str] = field(default_factory=list)

    @classmethod
    def load(cls, session: Mapping) -> "Board":
        data = session.get(SESSION_KEY) or {}
        return cls(marked=list(data.get("marked", [])))

    def store(self, session) -> None:
        if self.marked:
            session[SESSION_KEY] = {"marked": list(self.marked)}
        else:
            session.pop(SESSION_KEY, None)

    def is_marked(self, todo_id: str) -> bool:
        return todo_id in self.marked

    def toggle(self, todo_id: str) -> bool:
        """Flip the mark on a todo; returns the new state."""
        if todo_id in self.marked:
            self.marked.remove(todo_id)
            return False
        self.marked.append(todo_id)
        return True

    def forget(self, ids: Iterable[str]) -> None:
        drop = set(ids)
        self.marked = [i for i in self.marked if i not in drop]

    def reconcile(self, todo_ids: Iterable[str], *, complete: bool) -> set[str]:
        """
        Carry marks over a fresh fetch and return the ids to flag.

        `complete` means the fetch was unfiltered: marks on ids missing from
        it belong to todos deleted elsewhere and are dropped. A filtered fetch
        keeps marks on todos it merely hid.
        """
        fetched = set(todo_ids)
        if complete:
            self.marked = [i for i in self.marked if i in fetched]
        return fetched.intersection(self.marked)
