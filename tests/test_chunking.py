from semantic_index.chunking import ChunkingConfig, ChunkKind, chunk_file, detect_language


def _cfg(*, max_bytes: int = 6000, window_lines: int = 50, window_overlap: int = 0) -> ChunkingConfig:
    return ChunkingConfig(max_bytes=max_bytes, window_lines=window_lines, window_overlap=window_overlap)


CART = '''def foo(items):
    """Sum the prices of all items in the shopping cart."""
    total = 0
    for item in items:
        total += item.price
    return total


def bar(path):
    """Read a configuration file from disk and parse it as json."""
    with open(path) as handle:
        return json.load(handle)
'''


def _assert_no_overlap(chunks):
    for prev, cur in zip(chunks, chunks[1:]):
        assert prev.end_byte <= cur.start_byte


def test_python_functions_become_one_chunk_each():
    chunks = chunk_file("app.py", CART, _cfg())

    assert [(c.kind, c.name) for c in chunks] == [(ChunkKind.FUNCTION, "foo"), (ChunkKind.FUNCTION, "bar")]
    assert (chunks[0].start_line, chunks[0].end_line) == (1, 6)
    assert (chunks[1].start_line, chunks[1].end_line) == (9, 12)
    assert chunks[0].text.startswith("def foo(items):")
    assert all(c.language == "python" for c in chunks)
    _assert_no_overlap(chunks)


def test_chunking_is_deterministic():
    assert chunk_file("app.py", CART, _cfg()) == chunk_file("app.py", CART, _cfg())


def test_same_content_at_different_paths_gets_different_ids():
    a = chunk_file("a/app.py", CART, _cfg())
    b = chunk_file("b/app.py", CART, _cfg())
    assert [c.text for c in a] == [c.text for c in b]
    assert {c.chunk_id for c in a}.isdisjoint({c.chunk_id for c in b})


def test_editing_one_character_changes_only_that_chunk_id():
    before = chunk_file("app.py", CART, _cfg())
    after = chunk_file("app.py", CART.replace("json.load", "json.loads"), _cfg())

    assert before[0].chunk_id == after[0].chunk_id
    assert before[1].chunk_id != after[1].chunk_id


def test_editing_an_earlier_chunk_keeps_later_ids():
    before = chunk_file("app.py", CART, _cfg())
    after = chunk_file("app.py", CART.replace("total = 0", "total = 00"), _cfg())

    assert after[1].start_byte == before[1].start_byte + 1
    assert before[0].chunk_id != after[0].chunk_id
    assert before[1].chunk_id == after[1].chunk_id


def test_identical_chunks_in_one_file_get_distinct_ids():
    text = "x = 1\n\n\ndef f():\n    return 1\n\n\nx = 1\n"
    chunks = chunk_file("dup.py", text, _cfg())

    texts = [c.text for c in chunks]
    assert len(set(texts)) < len(texts)
    assert len({c.chunk_id for c in chunks}) == len(chunks)


def test_config_change_changes_ids():
    a = chunk_file("app.py", CART, _cfg())
    b = chunk_file("app.py", CART, _cfg(window_lines=40))
    assert {c.chunk_id for c in a}.isdisjoint({c.chunk_id for c in b})


def test_module_level_code_is_a_block_and_comment_only_runs_are_skipped():
    text = "# just a comment\n\nimport os\nVALUE = 1\n\n\ndef f():\n    return VALUE\n\n# trailing note\n"
    chunks = chunk_file("mod.py", text, _cfg())

    assert [c.kind for c in chunks] == [ChunkKind.BLOCK, ChunkKind.FUNCTION]
    assert chunks[0].text == "import os\nVALUE = 1"
    assert chunks[1].name == "f"


def test_decorated_function_keeps_its_decorator():
    text = "@cache\ndef lookup(key):\n    return key\n"
    chunks = chunk_file("deco.py", text, _cfg())

    assert len(chunks) == 1
    assert chunks[0].kind == ChunkKind.FUNCTION
    assert chunks[0].name == "lookup"
    assert chunks[0].text.startswith("@cache")


def test_class_is_one_chunk():
    text = "class Cart:\n    def add(self, item):\n        self.items.append(item)\n"
    chunks = chunk_file("cart.py", text, _cfg())
    assert [(c.kind, c.name) for c in chunks] == [(ChunkKind.CLASS, "Cart")]


def test_oversized_function_is_split_at_statement_boundaries():
    body = "".join(f"    value_{i} = compute({i})\n" for i in range(40))
    text = f"def big():\n{body}    return value_0\n"
    chunks = chunk_file("big.py", text, _cfg(max_bytes=200))

    assert len(chunks) > 1
    assert all(c.kind == ChunkKind.FUNCTION and c.name == "big" for c in chunks)
    assert all(len(c.text.encode("utf-8")) <= 200 for c in chunks)
    assert chunks[0].text.startswith("def big():")
    _assert_no_overlap(chunks)


def test_parse_error_falls_back_to_line_windows():
    text = "def broken(:\n    pass\n" * 3
    chunks = chunk_file("broken.py", text, _cfg(window_lines=2))

    assert chunks
    assert all(c.kind == ChunkKind.WINDOW for c in chunks)
    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 2), (3, 4), (5, 6)]


def test_unsupported_language_uses_windows():
    text = "".join(f"line {i}\n" for i in range(1, 8))
    chunks = chunk_file("notes.txt", text, _cfg(window_lines=3))

    assert detect_language("notes.txt") == "text"
    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 3), (4, 6), (7, 7)]
    assert all(c.kind == ChunkKind.WINDOW and c.language == "text" for c in chunks)
    _assert_no_overlap(chunks)


def test_window_overlap_is_honored():
    text = "".join(f"line {i}\n" for i in range(1, 7))
    chunks = chunk_file("notes.txt", text, _cfg(window_lines=4, window_overlap=2))
    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 4), (3, 6)]


def test_window_split_is_utf8_safe():
    text = ("é" * 5000) + "\n"
    chunks = chunk_file("wide.txt", text, _cfg(max_bytes=201))

    assert len(chunks) > 1
    assert "".join(c.text for c in chunks) == text
    assert all(len(c.text.encode("utf-8")) <= 201 for c in chunks)


def test_empty_or_blank_file_has_no_chunks():
    assert chunk_file("empty.py", "", _cfg()) == []
    assert chunk_file("blank.py", "\n\n   \n", _cfg()) == []


def test_rust_items():
    text = "struct Point {\n    x: i32,\n}\n\nfn add(a: i32, b: i32) -> i32 {\n    a + b\n}\n"
    chunks = chunk_file("lib.rs", text, _cfg())
    assert [(c.kind, c.name) for c in chunks] == [(ChunkKind.CLASS, "Point"), (ChunkKind.FUNCTION, "add")]


def test_typescript_exported_function():
    text = "export function greet(name: string): string {\n  return `hi ${name}`;\n}\n"
    chunks = chunk_file("greet.ts", text, _cfg())
    assert [(c.kind, c.name) for c in chunks] == [(ChunkKind.FUNCTION, "greet")]


def test_javascript_arrow_function_constant():
    text = "const double = (x) => {\n  return x * 2;\n};\n"
    chunks = chunk_file("math.js", text, _cfg())
    assert [(c.kind, c.name) for c in chunks] == [(ChunkKind.FUNCTION, "double")]


def test_go_function():
    text = "package main\n\nfunc Add(a int, b int) int {\n\treturn a + b\n}\n"
    chunks = chunk_file("main.go", text, _cfg())
    assert ("Add", ChunkKind.FUNCTION) in [(c.name, c.kind) for c in chunks]
    _assert_no_overlap(chunks)
