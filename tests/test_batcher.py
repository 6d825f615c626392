import pytest

from oai_harvester.batcher import BatchAssembler, assemble


def records(n):
    return [{"identifier": f"oai:x:{i}"} for i in range(1, n + 1)]


def test_125_records_make_three_batches():
    batches = assemble(records(125), 50)

    assert [len(b.records) for b in batches] == [50, 50, 25]
    assert [b.batch_number for b in batches] == [1, 2, 3]
    assert all(b.total_batches == 3 for b in batches)
    flattened = [r["identifier"] for b in batches for r in b.records]
    assert flattened == [f"oai:x:{i}" for i in range(1, 126)]


def test_no_records_no_batches():
    assert assemble([], 50) == []


@pytest.mark.parametrize("count, capacity, sizes", [
    (1, 50, [1]),
    (50, 50, [50]),
    (51, 50, [50, 1]),
    (7, 3, [3, 3, 1]),
    (4, 1, [1, 1, 1, 1]),
])
def test_batch_sizes(count, capacity, sizes):
    batches = assemble(records(count), capacity)
    assert [len(b) for b in batches] == sizes


def test_default_capacity_is_fifty():
    assert [len(b) for b in assemble(records(60))] == [50, 10]


def test_input_is_not_modified():
    source = records(5)
    assemble(source, 2)
    assert source == records(5)


@pytest.mark.parametrize("capacity", [0, -1])
def test_capacity_must_be_positive(capacity):
    with pytest.raises(ValueError):
        assemble(records(3), capacity)
    with pytest.raises(ValueError):
        BatchAssembler(capacity)


def test_assembler_uses_its_capacity():
    assembler = BatchAssembler(2)
    assert [len(b) for b in assembler.assemble(records(5))] == [2, 2, 1]
