import pytest

from blockdelta import divide_to_chunks


def test_split_with_remainder():
    chunks = divide_to_chunks(b"1234567890", 3)
    assert chunks == [b"123", b"456", b"789", b"0"]


def test_split_exact_multiple_has_no_empty_tail():
    assert divide_to_chunks(b"123456", 3) == [b"123", b"456"]


def test_split_empty_buffer():
    assert divide_to_chunks(b"", 4) == []


def test_split_accepts_bytearray_and_memoryview():
    assert divide_to_chunks(bytearray(b"abcde"), 2) == [b"ab", b"cd", b"e"]
    assert divide_to_chunks(memoryview(b"abcde"), 5) == [b"abcde"]


@pytest.mark.parametrize("length", [0, 1, 7, 64, 65, 100])
@pytest.mark.parametrize("size", [1, 3, 8, 64])
def test_chunk_count_sizes_and_concat(length, size):
    data = bytes(i % 251 for i in range(length))
    chunks = divide_to_chunks(data, size)
    assert len(chunks) == -(-length // size)
    assert all(len(c) == size for c in chunks[:-1])
    if chunks:
        assert len(chunks[-1]) == (length % size or size)
    assert b"".join(chunks) == data


@pytest.mark.parametrize("size", [0, -1, 1.5, "4", True, None])
def test_invalid_chunk_size(size):
    with pytest.raises(ValueError):
        divide_to_chunks(b"abc", size)
