"""Tests for the command graph."""

import pytest

from audioseq.descriptor.model import SectionKind
from audioseq.errors import DanglingReferenceError, GraphError, InvalidCommandError, InvariantError
from audioseq.models.command import RawData, TableEntry, Target, new_command
from audioseq.models.graph import SequenceGraph


def _volume_channel(graph, descriptor, value=100):
    chn = graph.create_section(SectionKind.CHN)
    graph.add_command(chn, new_command(descriptor.by_name("Chn Volume"), value=value))
    graph.add_command(chn, new_command(descriptor.by_name("End of Data")))
    return chn


@pytest.fixture
def graph(descriptor):
    """Return a sequence header starting two identical channels."""
    graph = SequenceGraph(descriptor)
    seq = graph.create_section(SectionKind.SEQ)
    chn_a = _volume_channel(graph, descriptor)
    chn_b = _volume_channel(graph, descriptor)
    ptr = descriptor.by_name("Ptr Channel Header")
    graph.add_command(seq, new_command(ptr, index=0, target=Target(chn_a.index, 0)))
    graph.add_command(seq, new_command(ptr, index=1, target=Target(chn_b.index, 0)))
    graph.add_command(seq, new_command(descriptor.by_name("End of Data")))
    return graph


class TestGraphLookup:
    """Test cases for section and reference lookup."""

    def test_indices(self, graph):
        """Test that new sections are numbered in creation order."""
        assert [s.index for s in graph.sections] == [0, 1, 2]
        assert graph.section(1).kind == SectionKind.CHN

    def test_missing_section(self, graph):
        """Test that an unknown index raises DanglingReferenceError."""
        with pytest.raises(DanglingReferenceError):
            graph.section(9)
        with pytest.raises(DanglingReferenceError):
            graph.command_at(1, 5)

    def test_references(self, graph):
        """Test reference enumeration."""
        assert len(list(graph.references())) == 2
        assert len(graph.references_to(1)) == 1
        assert graph.check_references() == []

    def test_dangling_reference_reported(self, graph):
        """Test that a reference to a missing section is reported."""
        graph.section(0).commands[0].target = Target(7, 0)
        problems = graph.check_references()
        assert len(problems) == 1
        assert "No section 7" in problems[0]


class TestGraphMutation:
    """Test cases for editing the graph."""

    def test_invalid_command_rejected(self, graph, descriptor):
        """Test that a command illegal in the kind is refused."""
        volume = new_command(descriptor.by_name("Chn Volume"), value=1)
        with pytest.raises(InvalidCommandError):
            graph.add_command(graph.section(0), volume)

    def test_insert_shifts_targets(self, graph, descriptor):
        """Test that inserting before a referenced command keeps the reference on it."""
        seq = graph.section(0)
        jump = new_command(descriptor.by_name("Jump"), target=Target(0, 2))
        graph.add_command(seq, jump)
        graph.add_command(seq, new_command(descriptor.by_name("Tempo"), value=120), position=0)
        assert jump.target == Target(0, 3)

    def test_delete_section_refused_while_referenced(self, graph):
        """Test that a referenced section cannot be deleted."""
        with pytest.raises(GraphError):
            graph.delete_section(1)

    def test_remove_section_moves_references(self, graph):
        """Test merging one section into another."""
        graph.remove_section(2, 1)
        assert len(graph) == 2
        assert [ref.target.section for ref in graph.references()] == [1, 1]

    def test_merge_duplicates(self, graph):
        """Test that identical sections collapse into the earlier one."""
        assert graph.merge_duplicates() == 1
        assert [s.index for s in graph.sections] == [0, 1]
        assert all(ref.target == Target(1, 0) for ref in graph.references())

    def test_merge_skips_raw(self, descriptor):
        """Test that raw sections are never merged by default."""
        graph = SequenceGraph(descriptor)
        for _ in range(2):
            graph.create_section(SectionKind.RAW, commands=[RawData(payload=b"\x01\x02")])
        assert graph.merge_duplicates() == 0

    def test_merge_tables_by_target(self, graph):
        """Test that tables pointing at merged sections merge despite decoded values."""
        for value, chn in ((0x10, 1), (0x20, 2)):
            graph.create_section(
                SectionKind.DYN_TABLE,
                element_kind=SectionKind.CHN,
                commands=[TableEntry(value=value, target=Target(chn, 0))],
            )
        assert graph.merge_duplicates() == 2
        kinds = [s.kind for s in graph.sections]
        assert kinds == [SectionKind.SEQ, SectionKind.CHN, SectionKind.DYN_TABLE]

    def test_renumber(self, graph):
        """Test reordering sections and their references."""
        seq, chn_a, chn_b = graph.sections
        mapping = graph.renumber([chn_b, seq, chn_a])
        assert mapping == {2: 0, 0: 1, 1: 2}
        assert graph.section(1) is seq
        assert [ref.target.section for ref in graph.references()] == [2, 0]

    def test_renumber_rejects_partial_order(self, graph):
        """Test that renumbering needs every section."""
        with pytest.raises(GraphError):
            graph.renumber(graph.sections[:2])


class TestGraphInvariants:
    """Test cases for placement checks and rendering."""

    def test_overlap_detected(self, descriptor):
        """Test that overlapping sections violate placement."""
        graph = SequenceGraph(descriptor)
        graph.create_section(SectionKind.SEQ, address=0, address_end=4)
        graph.create_section(SectionKind.CHN, address=2, address_end=6)
        with pytest.raises(InvariantError) as exc:
            graph.check_placement()
        assert exc.value.invariant == "non-overlapping-sections"

    def test_duplicate_address_detected(self, descriptor):
        """Test that two sections at one address violate placement."""
        graph = SequenceGraph(descriptor)
        graph.create_section(SectionKind.SEQ, address=0, address_end=2)
        graph.create_section(SectionKind.CHN, address=0, address_end=2)
        with pytest.raises(InvariantError) as exc:
            graph.check_placement()
        assert exc.value.invariant == "unique-section-address"

    def test_dump_is_stable(self, graph):
        """Test the internal-state rendering."""
        text = graph.dump()
        lines = text.splitlines()
        assert lines[0] == f"graph descriptor={graph.descriptor.name} sections=3"
        assert lines[1].startswith("section 0 kind=seq addr=---- end=---- ticks=0")
        assert "Ptr Channel Header index=0 target=1:0" in text
        assert graph.dump() == text

    def test_identical_sections_hash_alike(self, graph):
        """Test the structural fingerprint."""
        assert graph.section(1).content_hash == graph.section(2).content_hash
        assert graph.section(0).content_hash != graph.section(1).content_hash
