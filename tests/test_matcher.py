"""Tests for matching inputs and reading captures."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from strmatch import (
    CaptureError,
    Captures,
    CaptureKind,
    UnknownCaptureName,
    WrongCaptureKind,
    compile_pattern,
    match_bytes,
)


class TestScenarios:
    """End-to-end matches against the reference input."""

    def test_repeated_literals_match_without_captures(self, sample_input: bytes) -> None:
        compiled = compile_pattern('"one" _ "two"x2 _ "three"x3')
        captures = match_bytes(compiled, sample_input)
        assert captures is not None
        assert len(captures) == 0

    def test_discarded_rest(self, sample_input: bytes) -> None:
        captures = match_bytes(compile_pattern('"one" [_]'), sample_input)
        assert captures is not None
        assert dict(captures) == {}

    def test_named_rest(self, sample_input: bytes) -> None:
        captures = match_bytes(compile_pattern('"one" _ [hellooo]'), sample_input)
        assert captures.slice_at("hellooo") == b"twotwo threethreethree"

    def test_byte_and_rest_captures(self, sample_input: bytes) -> None:
        compiled = compile_pattern('"one" \' \' "two"x2 space "three"x2 [rest]')
        captures = match_bytes(compiled, sample_input)
        assert captures.byte_at("space") == ord(" ")
        assert captures.slice_at("rest") == b"three"

    def test_exact_length_mismatch(self) -> None:
        assert match_bytes(compile_pattern('"abc"'), b"abcd") is None

    def test_literal_mismatch(self) -> None:
        assert match_bytes(compile_pattern('"GET " [path]'), b"PUT /") is None


class TestLengthRules:
    """Exact length without a rest term, minimum length with one."""

    @pytest.mark.parametrize("data,matches", [
        (b"", False),
        (b"k=", False),
        (b"k=v", True),
        (b"k=vv", False),
        (b"==v", True),
    ])
    def test_without_rest(self, data: bytes, matches: bool) -> None:
        compiled = compile_pattern("key '=' value")
        assert compiled.matches(data) is matches

    @pytest.mark.parametrize("data", [b"k=", b"k=v", b"k=" + b"v" * 1000])
    def test_rest_captures_everything_after_prefix(self, data: bytes) -> None:
        compiled = compile_pattern("key '=' [value]")
        captures = compiled.apply(data)
        assert captures.slice_at("value") == data[compiled.length:]

    def test_rest_needs_the_prefix(self) -> None:
        assert compile_pattern("key '=' [value]").apply(b"k") is None

    def test_empty_pattern_matches_only_empty_input(self) -> None:
        compiled = compile_pattern("")
        assert compiled.matches(b"")
        assert not compiled.matches(b"x")

    @pytest.mark.parametrize("data", [b"", b"x", b"\x00" * 64])
    def test_lone_rest_matches_everything(self, data: bytes) -> None:
        assert compile_pattern("[_]").matches(data)

    @pytest.mark.parametrize("text", [
        '"abc"',
        '"ab"x3 \'-\' "xyz"',
        "'\\0'x4 \"\\xff\"",
        '"ab"x0',
    ])
    def test_literal_only_patterns_match_their_own_bytes(self, text: str) -> None:
        compiled = compile_pattern(text)
        data = b"".join(t.data * t.repeat for t in compiled.pattern.terms)
        captures = compiled.apply(data)
        assert captures is not None
        assert len(captures) == 0


class TestRepeatedLiterals:
    """Long literal repeats are compared window by window."""

    @pytest.mark.parametrize("data,matches", [
        (b"ab" * 300 + b"!", True),
        (b"ab" * 300, True),
        (b"ba" + b"ab" * 299, False),
        (b"ab" * 299 + b"aa", False),
        (b"ab" * 150 + b"xb" + b"ab" * 149, False),
        (b"ab" * 299, False),
    ])
    def test_each_window_is_checked(self, data: bytes, matches: bool) -> None:
        assert compile_pattern('"ab"x300 [tail]').matches(data) is matches

    def test_captures_around_a_long_repeat(self) -> None:
        compiled = compile_pattern("head '-'x500 tailx2")
        captures = compiled.apply(b"H" + b"-" * 500 + b"TT")
        assert captures.to_dict() == {"head": ord("H"), "tail": b"TT"}


class TestInputTypes:
    """Accepted input buffers and zero-copy slices."""

    def test_slices_borrow_from_the_input(self) -> None:
        data = b"GET /index.html"
        captures = compile_pattern('"GET " [path]').apply(data)
        path = captures.slice_at("path")
        assert isinstance(path, memoryview)
        assert path.obj is data

    def test_bytearray_cannot_resize_while_captured(self) -> None:
        buf = bytearray(b"GET /")
        captures = compile_pattern('"GET " [path]').apply(buf)
        with pytest.raises(BufferError):
            buf.extend(b"more")
        captures.slice_at("path").release()

    def test_memoryview_input(self) -> None:
        view = memoryview(b"xxGET /a")[2:]
        captures = compile_pattern('"GET " [path]').apply(view)
        assert captures.slice_at("path") == b"/a"

    def test_str_input_is_utf8_encoded(self) -> None:
        captures = compile_pattern('"é" [tail]').apply("é!")
        assert captures.slice_at("tail") == b"!"

    def test_concurrent_matches_share_one_pattern(self) -> None:
        compiled = compile_pattern("codex3 ' ' [reason]")
        inputs = [f"{n:03d} reason {n}".encode() for n in range(200)]

        def run(data: bytes) -> tuple[bytes, bytes]:
            captures = compiled.apply(data)
            return bytes(captures.slice_at("code")), bytes(captures.slice_at("reason"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(run, inputs))

        assert results == [(f"{n:03d}".encode(), f"reason {n}".encode()) for n in range(200)]


class TestCaptures:
    """Typed access to captures."""

    @pytest.fixture
    def captures(self, sample_input: bytes) -> Captures:
        compiled = compile_pattern('"one" \' \' "two"x2 space "three"x2 [rest]')
        return compiled.apply(sample_input)

    def test_mapping_interface(self, captures: Captures) -> None:
        assert list(captures) == ["space", "rest"]
        assert "space" in captures
        assert "nope" not in captures
        assert captures.get("nope") is None
        assert captures["space"] == 32

    def test_kind(self, captures: Captures) -> None:
        assert captures.kind("space") is CaptureKind.BYTE
        assert captures.kind("rest") is CaptureKind.SLICE
        with pytest.raises(UnknownCaptureName):
            captures.kind("nope")

    def test_to_dict_owns_its_values(self, captures: Captures) -> None:
        assert captures.to_dict() == {"space": 32, "rest": b"three"}
        assert repr(captures) == "Captures({'space': 32, 'rest': b'three'})"

    def test_wrong_kind(self, captures: Captures) -> None:
        with pytest.raises(WrongCaptureKind) as exc_info:
            captures.slice_at("space")
        assert exc_info.value.expected is CaptureKind.SLICE
        assert exc_info.value.actual is CaptureKind.BYTE
        with pytest.raises(TypeError):
            captures.byte_at("rest")

    def test_unknown_name(self, captures: Captures) -> None:
        with pytest.raises(UnknownCaptureName, match="nope"):
            captures.byte_at("nope")
        with pytest.raises(KeyError):
            captures["nope"]

    def test_errors_share_a_base(self) -> None:
        assert issubclass(UnknownCaptureName, CaptureError)
        assert issubclass(WrongCaptureKind, CaptureError)
        assert issubclass(CaptureError, LookupError)


class TestAccessors:
    """Accessors checked once per compiled pattern."""

    def test_accessors_read_matches(self, sample_input: bytes) -> None:
        compiled = compile_pattern('"one" \' \' "two"x2 space "three"x2 [rest]')
        space = compiled.byte_accessor("space")
        rest = compiled.slice_accessor("rest")
        captures = compiled.apply(sample_input)
        assert space(captures) == 32
        assert rest(captures) == b"three"

    def test_accessors_work_on_generated_results(self, sample_input: bytes) -> None:
        compiled = compile_pattern('"one" _ [hellooo]')
        hellooo = compiled.slice_accessor("hellooo")
        result = compiled.specialize("hello")(sample_input)
        assert hellooo(result) == b"twotwo threethreethree"

    def test_kind_is_checked_up_front(self) -> None:
        compiled = compile_pattern("a bx2")
        with pytest.raises(WrongCaptureKind):
            compiled.slice_accessor("a")
        with pytest.raises(WrongCaptureKind):
            compiled.byte_accessor("b")
        with pytest.raises(UnknownCaptureName):
            compiled.byte_accessor("c")
