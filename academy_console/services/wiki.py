"""Wiki sidebar tree: building, sibling ordering and drag-and-drop moves.

Folders and pages are stored flat. Placement is tracked per *sibling group*:

* root folders and root pages keep two independent sequences even though
  the sidebar shows them in one list (folders first, then pages);
* everything directly inside a folder shares one mixed sequence;
* sub-pages of a page share one sequence.

A drop reports an index into the *visual* list of the destination. At the
root that index is translated into the dragged item's own type sequence by
counting only same-type entries in front of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple

from .events import emit_wiki_event
from .storage import WikiFolderRecord, WikiNodeRecord


LOGGER = logging.getLogger(__name__)


class WikiMoveError(ValueError):
    """Raised when a requested move is impossible."""


class EntryKind(str, Enum):
    FOLDER = "folder"
    NODE = "node"


class EntryRef(NamedTuple):
    kind: EntryKind
    id: int

    @property
    def draggable_id(self) -> str:
        return f"{self.kind.value}-{self.id}"


class Scope(str, Enum):
    ROOT = "root"
    FOLDER = "folder"
    PAGE = "page"


@dataclass(frozen=True)
class SiblingKey:
    scope: Scope
    owner_id: Optional[int] = None
    kind: Optional[EntryKind] = None

    @classmethod
    def root(cls, kind: EntryKind) -> "SiblingKey":
        return cls(Scope.ROOT, None, kind)

    @classmethod
    def folder(cls, folder_id: int) -> "SiblingKey":
        return cls(Scope.FOLDER, folder_id, None)

    @classmethod
    def page(cls, node_id: int) -> "SiblingKey":
        return cls(Scope.PAGE, node_id, None)


@dataclass
class TreeEntry:
    ref: EntryRef
    label: str
    position: int
    children: List["TreeEntry"] = field(default_factory=list)


@dataclass(frozen=True)
class OrderUpdate:
    """New placement of one entry.

    For folders ``folder_id`` is the parent folder; ``parent_node_id`` is
    always ``None``.
    """

    ref: EntryRef
    position: int
    folder_id: Optional[int]
    parent_node_id: Optional[int] = None


@dataclass(frozen=True)
class MoveRequest:
    ref: EntryRef
    destination_folder_id: Optional[int] = None
    destination_page_id: Optional[int] = None
    index: Optional[int] = None


@dataclass(frozen=True)
class MovePlan:
    ref: EntryRef
    source: SiblingKey
    destination: SiblingKey
    index: int
    updates: Tuple[OrderUpdate, ...]


class SiblingGroups:
    """Ordered sibling lists keyed by :class:`SiblingKey`."""

    def __init__(
        self,
        folders: Iterable[WikiFolderRecord] = (),
        nodes: Iterable[WikiNodeRecord] = (),
    ) -> None:
        self._folders: Dict[int, WikiFolderRecord] = {folder.id: folder for folder in folders}
        self._nodes: Dict[int, WikiNodeRecord] = {node.id: node for node in nodes}
        self._groups: Dict[SiblingKey, List[EntryRef]] = {}
        self._owner: Dict[EntryRef, SiblingKey] = {}

        pending: List[Tuple[SiblingKey, int, str, EntryRef]] = []
        for folder in self._folders.values():
            ref = EntryRef(EntryKind.FOLDER, folder.id)
            pending.append((self._initial_key(ref), folder.position, folder.name, ref))
        for node in self._nodes.values():
            ref = EntryRef(EntryKind.NODE, node.id)
            pending.append((self._initial_key(ref), node.position, node.title, ref))

        # Order first, then name, then id keeps legacy rows with equal positions stable.
        pending.sort(key=lambda entry: (entry[1], entry[2].casefold(), entry[3].id))
        for key, _position, _label, ref in pending:
            self._groups.setdefault(key, []).append(ref)
            self._owner[ref] = key

    def _initial_key(self, ref: EntryRef) -> SiblingKey:
        if ref.kind is EntryKind.FOLDER:
            parent_id = self._folders[ref.id].parent_id
            if parent_id is not None and parent_id in self._folders:
                return SiblingKey.folder(parent_id)
            if parent_id is not None:
                LOGGER.warning("Folder %s references missing parent %s", ref.id, parent_id)
            return SiblingKey.root(EntryKind.FOLDER)

        node = self._nodes[ref.id]
        if node.parent_node_id is not None and node.parent_node_id in self._nodes:
            return SiblingKey.page(node.parent_node_id)
        if node.folder_id is not None and node.folder_id in self._folders:
            return SiblingKey.folder(node.folder_id)
        if node.folder_id is not None or node.parent_node_id is not None:
            LOGGER.warning("Page %s references a missing container; showing it at the root", ref.id)
        return SiblingKey.root(EntryKind.NODE)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def contains(self, ref: EntryRef) -> bool:
        return ref in self._owner

    def key_of(self, ref: EntryRef) -> SiblingKey:
        try:
            return self._owner[ref]
        except KeyError as error:
            raise WikiMoveError(f"Unknown {ref.kind.value} {ref.id}") from error

    def members(self, key: SiblingKey) -> List[EntryRef]:
        return list(self._groups.get(key, ()))

    def label(self, ref: EntryRef) -> str:
        if ref.kind is EntryKind.FOLDER:
            return self._folders[ref.id].name
        return self._nodes[ref.id].title

    def visual_children(self, scope: Scope, owner_id: Optional[int] = None) -> List[EntryRef]:
        """Return the list the sidebar shows for a container."""

        if scope is Scope.ROOT:
            return self.members(SiblingKey.root(EntryKind.FOLDER)) + self.members(
                SiblingKey.root(EntryKind.NODE)
            )
        if owner_id is None:
            raise WikiMoveError(f"A {scope.value} container needs an identifier")
        return self.members(SiblingKey(scope, owner_id, None))

    def descendants(self, ref: EntryRef) -> Set[EntryRef]:
        """All entries nested below *ref* (folders, pages and sub-pages)."""

        found: Set[EntryRef] = set()
        stack = [ref]
        while stack:
            current = stack.pop()
            if current.kind is EntryKind.FOLDER:
                children = self.members(SiblingKey.folder(current.id))
            else:
                children = self.members(SiblingKey.page(current.id))
            for child in children:
                if child not in found:
                    found.add(child)
                    stack.append(child)
        return found

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def remove(self, ref: EntryRef) -> Tuple[SiblingKey, int]:
        key = self.key_of(ref)
        group = self._groups[key]
        index = group.index(ref)
        group.pop(index)
        del self._owner[ref]
        return key, index

    def insert_at(self, key: SiblingKey, index: int, ref: EntryRef) -> int:
        """Insert *ref* into *key* at *index* (clamped) and return the index used."""

        if ref in self._owner:
            raise WikiMoveError(f"{ref.draggable_id} is already placed; remove it first")
        if key.scope is Scope.ROOT and key.kind is not ref.kind:
            raise WikiMoveError(f"Cannot place a {ref.kind.value} in the root {key.kind} sequence")
        group = self._groups.setdefault(key, [])
        clamped = max(0, min(index, len(group)))
        group.insert(clamped, ref)
        self._owner[ref] = key
        return clamped

    def renumber(self, key: SiblingKey) -> List[OrderUpdate]:
        """Return ``OrderUpdate`` rows numbering *key* from zero."""

        folder_id: Optional[int] = None
        parent_node_id: Optional[int] = None
        if key.scope is Scope.FOLDER:
            folder_id = key.owner_id
        elif key.scope is Scope.PAGE:
            parent_node_id = key.owner_id
            parent = self._nodes.get(key.owner_id) if key.owner_id is not None else None
            folder_id = self._container_folder(parent) if parent is not None else None

        updates: List[OrderUpdate] = []
        for position, ref in enumerate(self.members(key)):
            if ref.kind is EntryKind.FOLDER:
                updates.append(OrderUpdate(ref, position, folder_id, None))
            else:
                updates.append(OrderUpdate(ref, position, folder_id, parent_node_id))
        return updates

    def _container_folder(self, node: WikiNodeRecord) -> Optional[int]:
        """Folder a page effectively lives in, following parent pages upward."""

        key = self._owner.get(EntryRef(EntryKind.NODE, node.id))
        seen: Set[int] = set()
        while key is not None and key.scope is Scope.PAGE and key.owner_id not in seen:
            seen.add(key.owner_id)
            key = self._owner.get(EntryRef(EntryKind.NODE, key.owner_id))
        if key is not None and key.scope is Scope.FOLDER:
            return key.owner_id
        return None


def build_tree(
    folders: Iterable[WikiFolderRecord], nodes: Iterable[WikiNodeRecord]
) -> List[TreeEntry]:
    """Return the root entries of the sidebar tree, children nested."""

    groups = SiblingGroups(folders, nodes)

    def _entry(ref: EntryRef, position: int) -> TreeEntry:
        if ref.kind is EntryKind.FOLDER:
            children_refs = groups.members(SiblingKey.folder(ref.id))
        else:
            children_refs = groups.members(SiblingKey.page(ref.id))
        return TreeEntry(
            ref=ref,
            label=groups.label(ref),
            position=position,
            children=[_entry(child, index) for index, child in enumerate(children_refs)],
        )

    roots: List[TreeEntry] = []
    for kind in (EntryKind.FOLDER, EntryKind.NODE):
        for index, ref in enumerate(groups.members(SiblingKey.root(kind))):
            roots.append(_entry(ref, index))
    return roots


def destination_index(
    visual_siblings: Sequence[EntryRef],
    ref: EntryRef,
    visual_index: Optional[int],
    key: SiblingKey,
) -> int:
    """Translate a drop index in the visual list into an index within *key*.

    ``visual_siblings`` is the destination list as displayed. The dragged
    entry is ignored when present. ``None`` means "append".
    """

    others = [sibling for sibling in visual_siblings if sibling != ref]
    if visual_index is None:
        visual_index = len(others)
    visual_index = max(0, min(visual_index, len(others)))
    if key.scope is Scope.ROOT:
        return sum(1 for sibling in others[:visual_index] if sibling.kind is ref.kind)
    return visual_index


def _destination_key(request: MoveRequest, groups: SiblingGroups) -> Tuple[SiblingKey, Scope, Optional[int]]:
    ref = request.ref
    if request.destination_page_id is not None:
        if ref.kind is EntryKind.FOLDER:
            raise WikiMoveError("Folders cannot be placed under a page")
        target = EntryRef(EntryKind.NODE, request.destination_page_id)
        if not groups.contains(target):
            raise WikiMoveError(f"Unknown page {request.destination_page_id}")
        if target == ref or target in groups.descendants(ref):
            raise WikiMoveError("Cannot move a page under itself or one of its sub-pages")
        return SiblingKey.page(target.id), Scope.PAGE, target.id

    if request.destination_folder_id is not None:
        target = EntryRef(EntryKind.FOLDER, request.destination_folder_id)
        if not groups.contains(target):
            raise WikiMoveError(f"Unknown folder {request.destination_folder_id}")
        if ref.kind is EntryKind.FOLDER and (target == ref or target in groups.descendants(ref)):
            raise WikiMoveError("Cannot move folder into itself")
        return SiblingKey.folder(target.id), Scope.FOLDER, target.id

    return SiblingKey.root(ref.kind), Scope.ROOT, None


def plan_move(
    folders: Iterable[WikiFolderRecord],
    nodes: Iterable[WikiNodeRecord],
    request: MoveRequest,
) -> MovePlan:
    """Compute the placement changes for *request* without persisting them."""

    groups = SiblingGroups(folders, nodes)
    ref = request.ref
    if not groups.contains(ref):
        raise WikiMoveError(f"Unknown {ref.kind.value} {ref.id}")

    destination, scope, owner_id = _destination_key(request, groups)
    visual = groups.visual_children(scope, owner_id)
    index = destination_index(visual, ref, request.index, destination)

    source, source_index = groups.remove(ref)
    index = groups.insert_at(destination, index, ref)

    updates: List[OrderUpdate] = []
    if source != destination:
        updates.extend(groups.renumber(source))
    updates.extend(groups.renumber(destination))
    # Sub-pages follow a moved page into its new folder.
    if ref.kind is EntryKind.NODE:
        for child in sorted(groups.descendants(ref)):
            updates.extend(
                update for update in groups.renumber(groups.key_of(child)) if update.ref == child
            )

    emit_wiki_event(
        "Planned move",
        context={"entry": ref.draggable_id},
        payload={
            "from": f"{source.scope.value}:{source.owner_id}",
            "from_index": source_index,
            "to": f"{destination.scope.value}:{destination.owner_id}",
            "index": index,
            "updates": len(updates),
        },
    )
    return MovePlan(
        ref=ref,
        source=source,
        destination=destination,
        index=index,
        updates=tuple(updates),
    )


# ----------------------------------------------------------------------
# Drag-and-drop resolution
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class DropLocation:
    """A droppable list and an index in it; ``None`` means the end."""

    droppable_id: str
    index: Optional[int] = None


@dataclass(frozen=True)
class DropResult:
    """What the drag-and-drop library reports when a drag ends."""

    draggable_id: str
    source: DropLocation
    destination: Optional[DropLocation] = None
    combine: Optional[str] = None


def parse_entry_id(value: str) -> EntryRef:
    """Parse ``folder-<id>`` / ``node-<id>`` (legacy ``file-<id>``)."""

    raw_kind, _, raw_id = value.partition("-")
    if raw_kind == "file":
        raw_kind = EntryKind.NODE.value
    try:
        kind = EntryKind(raw_kind)
        return EntryRef(kind, int(raw_id))
    except ValueError as error:
        raise WikiMoveError(f"Invalid draggable id '{value}'") from error


def _parse_droppable(value: str) -> Tuple[Optional[int], Optional[int]]:
    if value == Scope.ROOT.value:
        return None, None
    prefix, _, raw_id = value.partition("-")
    try:
        identifier = int(raw_id)
    except ValueError as error:
        raise WikiMoveError(f"Invalid droppable id '{value}'") from error
    if prefix == Scope.FOLDER.value:
        return identifier, None
    if prefix == Scope.PAGE.value:
        return None, identifier
    raise WikiMoveError(f"Invalid droppable id '{value}'")


def locate(
    folders: Iterable[WikiFolderRecord],
    nodes: Iterable[WikiNodeRecord],
    ref: EntryRef,
) -> DropLocation:
    """Return where *ref* currently sits in the sidebar."""

    groups = SiblingGroups(folders, nodes)
    key = groups.key_of(ref)
    if key.scope is Scope.ROOT:
        droppable_id = Scope.ROOT.value
    else:
        droppable_id = f"{key.scope.value}-{key.owner_id}"
    visual = groups.visual_children(key.scope, key.owner_id)
    return DropLocation(droppable_id=droppable_id, index=visual.index(ref))


def resolve_drop(result: DropResult) -> Optional[MoveRequest]:
    """Turn a drag result into a :class:`MoveRequest`, or ``None`` for no-ops."""

    if result.combine is not None:
        ref = parse_entry_id(result.draggable_id)
        target = parse_entry_id(result.combine)
        if target.kind is not EntryKind.FOLDER:
            LOGGER.debug("Dropped %s on page %s; ignoring combine", ref.draggable_id, target.id)
            return None
        return MoveRequest(ref=ref, destination_folder_id=target.id, index=0)

    destination = result.destination
    if destination is None or destination == result.source:
        return None
    ref = parse_entry_id(result.draggable_id)
    folder_id, page_id = _parse_droppable(destination.droppable_id)
    return MoveRequest(
        ref=ref,
        destination_folder_id=folder_id,
        destination_page_id=page_id,
        index=destination.index,
    )


__all__ = [
    "DropLocation",
    "DropResult",
    "EntryKind",
    "EntryRef",
    "MovePlan",
    "MoveRequest",
    "OrderUpdate",
    "Scope",
    "SiblingGroups",
    "SiblingKey",
    "TreeEntry",
    "WikiMoveError",
    "build_tree",
    "destination_index",
    "locate",
    "parse_entry_id",
    "plan_move",
    "resolve_drop",
]
