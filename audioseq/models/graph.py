"""
Command graph: sections, commands and the references between them.

The graph is an arena of sections addressed by stable integer index.
Commands refer to each other only through Target values, so sections can be
merged, deleted and renumbered by rewriting targets.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from audioseq.descriptor.model import Descriptor, SectionKind
from audioseq.errors import DanglingReferenceError, GraphError, InvalidCommandError, InvariantError
from audioseq.models.command import Command, Target
from audioseq.models.section import Section


@dataclass
class Reference:
    """
    One reference edge of the graph.

    Attributes:
        section: Section holding the referencing command
        position: Index of the referencing command
        command: The referencing command
        target: Where it points
    """

    section: Section
    position: int
    command: Command
    target: Target


class SequenceGraph:
    """
    The command graph shared by all conversions.

    Sections are kept in placement order; a section's index equals its
    position in that order after renumber().

    Example:
        graph = SequenceGraph(descriptor)
        seq = graph.create_section(SectionKind.SEQ)
        graph.add_command(seq, new_command(descriptor.by_name("End of Data")))
    """

    def __init__(self, descriptor: Descriptor):
        self.descriptor = descriptor
        self.sections: List[Section] = []
        self._by_index: Dict[int, Section] = {}

    def __len__(self) -> int:
        return len(self.sections)

    def __iter__(self) -> Iterator[Section]:
        return iter(self.sections)

    # Lookup

    def section(self, index: int) -> Section:
        """
        Get a section by index.

        Raises:
            DanglingReferenceError: If no section has that index
        """
        try:
            return self._by_index[index]
        except KeyError:
            raise DanglingReferenceError(f"No section {index}") from None

    def has_section(self, index: int) -> bool:
        return index in self._by_index

    def section_at(self, address: int) -> Optional[Section]:
        """Find the placed section containing an address."""
        for section in self.sections:
            if section.contains(address):
                return section
        return None

    def command_at(self, section_index: int, position: int) -> Command:
        """
        Get a command by (section, position).

        Raises:
            DanglingReferenceError: If either does not exist
        """
        section = self.section(section_index)
        if not 0 <= position < len(section.commands):
            raise DanglingReferenceError(
                f"Section {section_index} has no command {position}"
            )
        return section.commands[position]

    def resolve(self, target: Target) -> Tuple[Section, Command]:
        """
        Resolve a reference.

        Raises:
            DanglingReferenceError: If the target does not exist
        """
        return self.section(target.section), self.command_at(target.section, target.command)

    def sections_of(self, kind: SectionKind) -> List[Section]:
        return [s for s in self.sections if s.kind == kind]

    def find_command(self, command: Command) -> Optional[Tuple[int, int]]:
        """Find (section index, position) of a command object."""
        for section in self.sections:
            for i, cmd in enumerate(section.commands):
                if cmd is command:
                    return section.index, i
        return None

    # References

    def references(self) -> Iterator[Reference]:
        """Iterate over every reference edge."""
        for section in self.sections:
            for i, cmd in enumerate(section.commands):
                target = cmd.get_target()
                if target is not None:
                    yield Reference(section, i, cmd, target)

    def references_to(self, section_index: int) -> List[Reference]:
        return [ref for ref in self.references() if ref.target.section == section_index]

    def check_references(self) -> List[str]:
        """
        Check that every reference resolves.

        Returns:
            Problem descriptions (empty if all resolve)
        """
        problems = []
        for ref in self.references():
            try:
                self.resolve(ref.target)
            except DanglingReferenceError as e:
                problems.append(f"{ref.section.label} command {ref.position}: {e}")
        return problems

    # Mutation

    def create_section(self, kind: SectionKind, address: Optional[int] = None, **kwargs) -> Section:
        """Create and append a new empty section."""
        index = max(self._by_index, default=-1) + 1
        section = Section(index=index, kind=kind, address=address, **kwargs)
        self.sections.append(section)
        self._by_index[index] = section
        return section

    def is_command_valid_in(self, command: Command, kind: SectionKind) -> bool:
        """Check a command against the descriptor for a section kind."""
        return self.descriptor.is_command_valid_in(command, kind)

    def add_command(
        self, section: Section, command: Command, position: Optional[int] = None
    ) -> Command:
        """
        Insert a command into a section.

        Raises:
            InvalidCommandError: If the command is not legal in the section
        """
        if not self.is_command_valid_in(command, section.kind):
            raise InvalidCommandError(
                f"{command.describe()} is not valid in {section.kind.display_name}"
            )
        if position is None:
            section.commands.append(command)
        else:
            section.commands.insert(position, command)
            self._shift_targets(section.index, position, 1)
        section.invalidate()
        return command

    def delete_command(self, section: Section, position: int) -> Command:
        """
        Remove a command from a section.

        References to later commands of the section are shifted; a reference
        to the removed command moves to the command that follows it.

        Raises:
            GraphError: If the removed command is referenced and is the last one
        """
        if position == len(section.commands) - 1 and any(
            ref.target == Target(section.index, position) for ref in self.references()
        ):
            raise GraphError(f"{section.label}: cannot delete referenced last command")
        command = section.commands.pop(position)
        self._shift_targets(section.index, position + 1, -1)
        section.invalidate()
        return command

    def _shift_targets(self, section_index: int, start: int, delta: int) -> None:
        for ref in list(self.references()):
            target = ref.target
            if target.section == section_index and target.command >= start:
                ref.command.set_target(Target(section_index, target.command + delta))
                ref.section.invalidate()

    def retarget(self, old_index: int, new_index: int) -> int:
        """
        Point every reference to one section at another.

        Returns:
            Number of references changed
        """
        changed = 0
        for ref in list(self.references()):
            if ref.target.section == old_index:
                ref.command.set_target(Target(new_index, ref.target.command))
                changed += 1
        self._invalidate_all()
        return changed

    def delete_section(self, index: int) -> Section:
        """
        Delete an unreferenced section.

        Raises:
            GraphError: If any other section still references it
        """
        section = self.section(index)
        incoming = [ref for ref in self.references_to(index) if ref.section is not section]
        if incoming:
            raise GraphError(
                f"{section.label} is still referenced by {incoming[0].section.label}"
            )
        self.sections.remove(section)
        del self._by_index[index]
        for other in self.sections:
            if other.fallthrough_to == index:
                other.fallthrough_to = None
        return section

    def remove_section(self, remove: int, replace: int) -> Section:
        """
        Merge a section into an identical one.

        Every reference to `remove` is moved to `replace`, then `remove` is
        deleted. Placement order of the remaining sections is unchanged.

        Raises:
            GraphError: If the two sections differ in kind or length
        """
        removed = self.section(remove)
        kept = self.section(replace)
        if removed.kind != kept.kind or len(removed.commands) != len(kept.commands):
            raise GraphError(f"Cannot merge {removed.label} into {kept.label}")

        # References from inside the removed section go with it
        for cmd in removed.commands:
            target = cmd.get_target()
            if target is not None and target.section == remove:
                cmd.set_target(Target(replace, target.command))
        self.retarget(remove, replace)
        return self.delete_section(remove)

    def renumber(self, order: Optional[List[Section]] = None) -> Dict[int, int]:
        """
        Re-index sections 0..n-1 in placement order.

        Args:
            order: New placement order (default: current order)

        Returns:
            Mapping of old index to new index
        """
        if order is not None:
            if sorted(s.index for s in order) != sorted(self._by_index):
                raise GraphError("Renumber order must contain every section exactly once")
            self.sections = list(order)

        mapping = {section.index: i for i, section in enumerate(self.sections)}
        for ref in list(self.references()):
            ref.command.set_target(Target(mapping[ref.target.section], ref.target.command))
        for section in self.sections:
            section.index = mapping[section.index]
            if section.fallthrough_to is not None:
                section.fallthrough_to = mapping.get(section.fallthrough_to)
        self._by_index = {section.index: section for section in self.sections}
        self._invalidate_all()
        return mapping

    def sort_by_address(self) -> None:
        """Order sections by address (unplaced sections last) and renumber."""
        order = sorted(
            self.sections,
            key=lambda s: (s.address is None, s.address if s.address is not None else 0, s.index),
        )
        self.renumber(order)

    def merge_duplicates(
        self,
        kinds: Optional[Tuple[SectionKind, ...]] = None,
        on_merge: Optional[Callable[[Section, Section], None]] = None,
    ) -> int:
        """
        Merge sections with identical content hash and kind.

        The earlier section is kept. Sections that fall through into the
        next one, or are fallen into, are never merged. Merging repeats until
        nothing changes, since merging children can make parents identical.

        Args:
            kinds: Kinds to consider (default: all but raw data)
            on_merge: Callback(removed, kept) for reporting

        Returns:
            Number of sections removed
        """
        if kinds is None:
            kinds = tuple(k for k in SectionKind if k != SectionKind.RAW)

        removed_total = 0
        while True:
            pinned = set()
            for section in self.sections:
                if section.fallthrough:
                    pinned.add(section.index)
                    if section.fallthrough_to is not None:
                        pinned.add(section.fallthrough_to)

            seen: Dict[Tuple[SectionKind, str], Section] = {}
            pair = None
            for section in self.sections:
                if section.kind not in kinds or section.index in pinned:
                    continue
                key = (section.kind, section.content_hash)
                if key in seen:
                    pair = (section, seen[key])
                    break
                seen[key] = section

            if pair is None:
                return removed_total

            duplicate, kept = pair
            if on_merge is not None:
                on_merge(duplicate, kept)
            self.remove_section(duplicate.index, kept.index)
            removed_total += 1

    def _invalidate_all(self) -> None:
        for section in self.sections:
            section.invalidate()

    # Invariants

    def check_placement(self) -> None:
        """
        Check that placed sections have unique, non-overlapping addresses.

        Raises:
            InvariantError: If two sections share or overlap addresses
        """
        placed = sorted(
            (s for s in self.sections if s.address is not None), key=lambda s: s.address
        )
        for before, after in zip(placed, placed[1:]):
            if before.address == after.address:
                raise InvariantError(
                    "unique-section-address",
                    f"{before.label} and {after.label} both start at 0x{after.address:04X}",
                )
            if before.address_end is not None and before.address_end > after.address:
                raise InvariantError(
                    "non-overlapping-sections",
                    f"{before.label} (0x{before.address:04X}-0x{before.address_end:04X}) "
                    f"overlaps {after.label} at 0x{after.address:04X}",
                )

    # Debug rendering

    def dump(self) -> str:
        """
        Render the full graph as text with stable field ordering.

        Returns:
            Multi-line text, one line per section and per command
        """
        lines = [f"graph descriptor={self.descriptor.name} sections={len(self.sections)}"]
        for section in self.sections:
            head = [f"section {section.index}", f"kind={section.kind.value}"]
            head.append(f"addr={_fmt_addr(section.address)}")
            head.append(f"end={_fmt_addr(section.address_end)}")
            head.append(f"ticks={section.ticks}")
            if section.element_kind is not None:
                head.append(f"element={section.element_kind.value}")
            if section.fallthrough:
                head.append(f"fallthrough={section.fallthrough_to}")
            head.append(f"hash={section.content_hash[:8]}")
            lines.append(" ".join(head))
            for i, cmd in enumerate(section.commands):
                length = "?" if cmd.length is None else str(cmd.length)
                wide = " wide" if cmd.force_wide else ""
                lines.append(
                    f"  {i:3d} {_fmt_addr(cmd.address)} [{length}] {cmd.describe()}{wide}"
                )
        return "\n".join(lines)


def _fmt_addr(address: Optional[int]) -> str:
    return "----" if address is None else f"{address:04X}"
