"""
Unit tests for the python source model.

These tests verify that:
1. Offsets resolve to the smallest enclosing element
2. Module and class qualified names follow the declaring scopes
3. Methods are found below and above an element
4. Read sessions keep a stable snapshot of a file
"""
import os
import threading

from ezdiscovery.source_model import (
    SourceFile,
    SourceModel,
    common_ancestor,
    enclosing_method,
    methods_under,
    module_name,
    split_lines,
)

SOURCE = '''\
import os


class Calculator:
    """Adds things."""

    def add(self, a, b):
        total = a + b
        return total

    @staticmethod
    def sub(a, b):
        return a - b


def helper():
    def inner():
        return 1
    return inner()
'''


class TestModuleName:
    def test_plain_module(self):
        """Path separators become dots."""
        assert module_name("pkg/mod.py") == "pkg.mod"

    def test_package_init(self):
        assert module_name("pkg/__init__.py") == "pkg"

    def test_src_layout(self):
        """A leading src directory is not part of the module name."""
        assert module_name("src/pkg/mod.py") == "pkg.mod"

    def test_top_level_module(self):
        assert module_name("calc.py") == "calc"


class TestElementAt:
    """Tests for resolving offsets to elements."""

    def test_offset_inside_statement(self):
        """An offset inside a statement belongs to the method around it."""
        source = SourceFile("calc.py", SOURCE)
        element = source.element_at(SOURCE.index("a + b"))
        assert element is not None
        assert enclosing_method(element).name == "add"

    def test_offset_on_def_line_is_the_method(self):
        """An offset on the def keyword is the method itself."""
        source = SourceFile("calc.py", SOURCE)
        element = source.element_at(SOURCE.index("def add"))
        assert element.is_method
        assert element.name == "add"

    def test_decorator_belongs_to_method(self):
        """Decorators are part of the decorated method."""
        source = SourceFile("calc.py", SOURCE)
        element = source.element_at(SOURCE.index("@staticmethod"))
        assert enclosing_method(element).name == "sub"

    def test_blank_line_between_methods_is_the_class(self):
        """A blank line between methods belongs to the class."""
        source = SourceFile("calc.py", SOURCE)
        offset = SOURCE.index("return total\n") + len("return total\n")
        element = source.element_at(offset)
        assert element.name == "Calculator"

    def test_offset_out_of_range(self):
        """Offsets outside the text resolve to nothing."""
        source = SourceFile("calc.py", SOURCE)
        assert source.element_at(len(SOURCE) + 10) is None
        assert source.element_at(-1) is None

    def test_end_of_file_resolves(self):
        """The end of the text is a valid offset."""
        source = SourceFile("calc.py", SOURCE)
        assert source.element_at(len(SOURCE)) is not None

    def test_multibyte_characters_before_offset(self):
        """Offsets count characters, not utf-8 bytes."""
        text = 'def greet():\n    return "héllo wörld" + name()\n'
        source = SourceFile("greet.py", text)
        element = source.element_at(text.index("name()"))
        assert element is not None
        assert text[element.start:element.end].startswith("name")


class TestTreeQueries:
    """Tests for ancestors and method searches."""

    def test_common_ancestor_of_two_methods_is_the_class(self):
        """Two methods of a class meet at the class."""
        source = SourceFile("calc.py", SOURCE)
        start = source.element_at(SOURCE.index("total = a"))
        end = source.element_at(SOURCE.index("a - b"))
        ancestor = common_ancestor([start, end])
        assert ancestor.name == "Calculator"
        assert [m.name for m in methods_under(ancestor)] == ["add", "sub"]

    def test_common_ancestor_ignores_missing_elements(self):
        """Unresolved elements are ignored, none at all gives None."""
        source = SourceFile("calc.py", SOURCE)
        start = source.element_at(SOURCE.index("total = a"))
        assert common_ancestor([start, None]) is start
        assert common_ancestor([None, None]) is None

    def test_methods_under_skips_local_functions(self):
        """Local functions are not methods."""
        source = SourceFile("calc.py", SOURCE)
        assert [m.name for m in methods_under(source.root)] == ["add", "sub", "helper"]

    def test_enclosing_method_of_local_function_body(self):
        """The body of a local function belongs to the function declaring it."""
        source = SourceFile("calc.py", SOURCE)
        assert enclosing_method(source.element_at(SOURCE.index("return 1"))).name == "helper"

    def test_enclosing_method_of_module_statement(self):
        """Module statements have no enclosing method."""
        source = SourceFile("calc.py", SOURCE)
        assert enclosing_method(source.element_at(SOURCE.index("import os"))) is None


class TestQualifiedNames:
    """Tests for method identifiers."""

    def test_method_in_class(self):
        """Methods are qualified with module and class."""
        source = SourceFile("pkg/calc.py", SOURCE)
        add = source.element_at(SOURCE.index("def add"))
        assert tuple(source.method_identifier(add)) == ("pkg.calc.Calculator", "add")

    def test_module_level_function(self):
        """Module level functions are qualified with the module."""
        source = SourceFile("pkg/calc.py", SOURCE)
        helper = source.element_at(SOURCE.index("def helper"))
        assert tuple(source.method_identifier(helper)) == ("pkg.calc", "helper")

    def test_local_function_has_no_identifier(self):
        """Local functions have no identifier."""
        source = SourceFile("pkg/calc.py", SOURCE)
        inner = source.element_at(SOURCE.index("def inner"))
        assert source.method_identifier(inner) is None

    def test_nested_class(self):
        """Nested classes are part of the qualified name."""
        text = "class Outer:\n    class Inner:\n        def m(self):\n            pass\n"
        source = SourceFile("mod.py", text)
        method = source.element_at(text.index("def m"))
        assert tuple(source.method_identifier(method)) == ("mod.Outer.Inner", "m")

    def test_class_inside_function_has_no_identifier(self):
        """A class declared inside a function has no qualified name."""
        text = "def factory():\n    class Local:\n        def m(self):\n            pass\n    return Local\n"
        source = SourceFile("mod.py", text)
        method = source.element_at(text.index("def m"))
        assert source.method_identifier(method) is None

    def test_conditional_method_keeps_class(self):
        """A method declared under an if still belongs to its class."""
        text = "class A:\n    if True:\n        def m(self):\n            pass\n"
        source = SourceFile("mod.py", text)
        method = source.element_at(text.index("def m"))
        assert tuple(source.method_identifier(method)) == ("mod.A", "m")


class TestSplitLines:
    def test_keeps_terminators(self):
        assert split_lines("a\nb\r\nc") == ["a\n", "b\r\n", "c"]

    def test_form_feed_is_not_a_line_break(self):
        """Only newline characters end a line."""
        assert split_lines("a\x0cb\n") == ["a\x0cb\n"]

    def test_empty(self):
        assert split_lines("") == []


class TestSourceModel:
    """Tests for file loading and read sessions."""

    def test_loads_python_files(self, tmp_path):
        """Python files are read relative to rootdir."""
        (tmp_path / "calc.py").write_text(SOURCE)
        model = SourceModel(str(tmp_path))
        with model.read_session() as session:
            source = session.file("calc.py")
        assert source.text == SOURCE

    def test_non_python_and_missing_files(self, tmp_path):
        """Non python and missing files are not loaded."""
        (tmp_path / "data.json").write_text("{}")
        model = SourceModel(str(tmp_path))
        with model.read_session() as session:
            assert session.file("data.json") is None
            assert session.file("missing.py") is None

    def test_syntax_error_is_skipped(self, tmp_path):
        """Files that do not parse are skipped."""
        (tmp_path / "broken.py").write_text("def broken(:\n")
        model = SourceModel(str(tmp_path))
        with model.read_session() as session:
            assert session.file("broken.py") is None

    def test_session_keeps_snapshot(self, tmp_path):
        """A file keeps its content for the whole session."""
        path = tmp_path / "calc.py"
        path.write_text(SOURCE)
        model = SourceModel(str(tmp_path))
        with model.read_session() as session:
            first = session.file("calc.py")
            path.write_text("x = 1\n")
            os.utime(path, (1, 1))
            assert session.file("calc.py") is first

    def test_sessions_do_not_block_each_other(self, tmp_path):
        """A file can be read while another session is still open."""
        (tmp_path / "calc.py").write_text(SOURCE)
        (tmp_path / "other.py").write_text("x = 1\n")
        model = SourceModel(str(tmp_path))
        loaded = []

        def read_other():
            with model.read_session() as session:
                loaded.append(session.file("other.py"))

        with model.read_session() as session:
            session.file("calc.py")
            worker = threading.Thread(target=read_other)
            worker.start()
            worker.join(timeout=5)
            assert not worker.is_alive()
        assert loaded[0].text == "x = 1\n"

    def test_changed_file_is_parsed_again(self, tmp_path):
        """A file changed on disk is parsed again in a new session."""
        path = tmp_path / "calc.py"
        path.write_text(SOURCE)
        model = SourceModel(str(tmp_path))
        with model.read_session() as session:
            first = session.file("calc.py")
        path.write_text("x = 1\n")
        os.utime(path, (1, 1))
        with model.read_session() as session:
            second = session.file("calc.py")
        assert second is not first
        assert second.text == "x = 1\n"

    def test_unchanged_file_is_cached(self, tmp_path):
        """An unchanged file is parsed once."""
        (tmp_path / "calc.py").write_text(SOURCE)
        model = SourceModel(str(tmp_path))
        with model.read_session() as session:
            first = session.file("calc.py")
        with model.read_session() as session:
            assert session.file("calc.py") is first
