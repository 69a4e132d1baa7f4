#!/usr/bin/env python3
"""
Tests for the wshell command parser.

Covers tokenizing, variable expansion, flag parsing, operator and pipe
splitting, and redirection extraction.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

from wshell.command_parser import (
    CommandParser, Redirect, RedirectType, Segment,
    tokenize, expand_variables, parse_flags, parse_command_flags,
    split_operators, split_pipes, has_pipe, extract_redirections, split_assignment
)


class TestTokenize(unittest.TestCase):
    """Test argv-style tokenizing."""

    def test_plain_words(self):
        self.assertEqual(tokenize("echo hello   world"), ["echo", "hello", "world"])

    def test_tabs_separate_tokens(self):
        self.assertEqual(tokenize("a\tb"), ["a", "b"])

    def test_single_quotes_keep_spaces(self):
        self.assertEqual(tokenize("echo 'hello world'"), ["echo", "hello world"])

    def test_double_quotes_keep_spaces(self):
        self.assertEqual(tokenize('echo "hello world"'), ["echo", "hello world"])

    def test_quotes_inside_a_word(self):
        self.assertEqual(tokenize("pre'fix 'post"), ["prefix post"])

    def test_backslash_escapes_outside_quotes(self):
        self.assertEqual(tokenize(r"echo a\ b"), ["echo", "a b"])

    def test_backslash_literal_in_single_quotes(self):
        self.assertEqual(tokenize(r"echo 'a\nb'"), ["echo", r"a\nb"])

    def test_backslash_in_double_quotes(self):
        """Only \\ \" $ and backtick are escapable inside double quotes."""
        self.assertEqual(tokenize(r'echo "say \"hi\""'), ["echo", 'say "hi"'])
        self.assertEqual(tokenize(r'printf "a\n"'), ["printf", r"a\n"])

    def test_empty_quoted_token(self):
        self.assertEqual(tokenize('test -z ""'), ["test", "-z", ""])
        self.assertEqual(tokenize("echo ''"), ["echo", ""])

    def test_unterminated_quote_is_flushed(self):
        self.assertEqual(tokenize("echo 'unterminated text"), ["echo", "unterminated text"])

    def test_empty_input(self):
        self.assertEqual(tokenize(""), [])
        self.assertEqual(tokenize("   "), [])


class TestExpandVariables(unittest.TestCase):
    """Test $NAME and ${NAME} expansion."""

    def setUp(self):
        self.env = {'NAME': 'world', 'DIR': 'data'}

    def test_plain_variable(self):
        self.assertEqual(expand_variables("hello $NAME", self.env), "hello world")

    def test_braced_variable(self):
        self.assertEqual(expand_variables("${DIR}_backup", self.env), "data_backup")

    def test_missing_variable_is_empty(self):
        self.assertEqual(expand_variables("a${MISSING}b $NOPE", self.env), "ab ")

    def test_double_quotes_expand(self):
        self.assertEqual(expand_variables('echo "$NAME"', self.env), 'echo "world"')

    def test_single_quotes_do_not_expand(self):
        self.assertEqual(expand_variables("echo '$NAME' $NAME", self.env), "echo '$NAME' world")

    def test_awk_field_reference_survives(self):
        self.assertEqual(expand_variables("awk '{print $1}'", self.env), "awk '{print $1}'")

    def test_single_quote_inside_double_quotes_expands(self):
        self.assertEqual(expand_variables('echo "it\'s $NAME"', self.env), 'echo "it\'s world"')

    def test_last_exit_code(self):
        self.assertEqual(expand_variables("echo $?", {}, last_exit_code=3), "echo 3")

    def test_last_exit_code_left_alone_without_value(self):
        self.assertEqual(expand_variables("echo $?", {}), "echo $?")

    def test_escaped_dollar_is_not_expanded(self):
        self.assertEqual(expand_variables(r'echo \$NAME', self.env), r'echo \$NAME')
        self.assertEqual(expand_variables(r'echo "\$NAME"', self.env), r'echo "\$NAME"')
        self.assertEqual(expand_variables(r'echo \${DIR}', self.env), r'echo \${DIR}')

    def test_escaped_backslash_before_variable(self):
        self.assertEqual(expand_variables(r'echo \\\\$NAME', self.env), r'echo \\\\world')

    def test_escaped_dollar_round_trip(self):
        self.assertEqual(tokenize(expand_variables(r'echo "\$NAME is $NAME"', self.env)),
                         ["echo", "$NAME is world"])


class TestParseFlags(unittest.TestCase):
    """Test getopt-style flag parsing."""

    def test_boolean_flags(self):
        parsed = parse_flags(["-r", "file"], boolean_flags="r")
        self.assertEqual(parsed.flags, {"r": ""})
        self.assertEqual(parsed.operands, ["file"])

    def test_combined_flags(self):
        parsed = parse_flags(["-rnu"])
        self.assertTrue(parsed.has("r"))
        self.assertTrue(parsed.has("n"))
        self.assertTrue(parsed.has("u"))

    def test_value_flag_takes_next_token(self):
        parsed = parse_flags(["-n", "5", "file.txt"], value_flags="n")
        self.assertEqual(parsed.flags["n"], "5")
        self.assertEqual(parsed.operands, ["file.txt"])

    def test_value_flag_attached(self):
        parsed = parse_flags(["-d:", "-f2"], value_flags="df")
        self.assertEqual(parsed.flags, {"d": ":", "f": "2"})

    def test_value_flag_at_end_of_cluster(self):
        parsed = parse_flags(["-in", "3"], value_flags="n")
        self.assertEqual(parsed.flags, {"i": "", "n": "3"})

    def test_long_flags(self):
        parsed = parse_flags(["--decode", "--width=10"])
        self.assertEqual(parsed.flags, {"decode": "", "width": "10"})

    def test_double_dash_ends_flags(self):
        parsed = parse_flags(["-v", "--", "-x", "file"])
        self.assertEqual(parsed.flags, {"v": ""})
        self.assertEqual(parsed.operands, ["-x", "file"])

    def test_lone_dash_is_operand(self):
        self.assertEqual(parse_flags(["-"]).operands, ["-"])

    def test_interleaved_operands_keep_order(self):
        parsed = parse_flags(["a", "-i", "b", "c"])
        self.assertEqual(parsed.operands, ["a", "b", "c"])

    def test_command_flag_grammar(self):
        parsed = parse_command_flags("grep", ["-in", "error", "log.txt"])
        self.assertEqual(parsed.flags, {"i": "", "n": ""})
        self.assertEqual(parsed.operands, ["error", "log.txt"])

        parsed = parse_command_flags("head", ["-n", "3"])
        self.assertEqual(parsed.flags, {"n": "3"})


class TestSplitOperators(unittest.TestCase):
    """Test ;, && and || splitting."""

    def test_sequence(self):
        segments = split_operators("echo a; echo b")
        self.assertEqual([s.command.strip() for s in segments], ["echo a", "echo b"])
        self.assertEqual([s.operator for s in segments], [";", ""])

    def test_and_or(self):
        segments = split_operators("true && echo yes || echo no")
        self.assertEqual([s.operator for s in segments], ["&&", "||", ""])

    def test_operators_inside_quotes_are_literal(self):
        segments = split_operators("echo 'a && b; c'")
        self.assertEqual(len(segments), 1)

    def test_escaped_semicolon(self):
        self.assertEqual(len(split_operators(r"echo a\; b")), 1)

    def test_empty_segments_dropped(self):
        segments = split_operators("echo a;; ;echo b")
        self.assertEqual(len(segments), 2)

    def test_pipe_is_not_an_operator(self):
        segments = split_operators("echo a | tr a b")
        self.assertEqual(segments, [Segment(command="echo a | tr a b", operator="")])


class TestPipes(unittest.TestCase):
    """Test pipe stage splitting."""

    def test_split_stages(self):
        self.assertEqual(split_pipes("cat f | sort | uniq"), ["cat f", "sort", "uniq"])

    def test_double_bar_is_not_a_pipe(self):
        self.assertFalse(has_pipe("false || true"))
        self.assertTrue(has_pipe("echo a | cat"))

    def test_quoted_pipe_still_splits(self):
        """Pipe splitting does not look at quotes."""
        self.assertEqual(split_pipes("echo 'a|b'"), ["echo 'a", "b'"])


class TestRedirections(unittest.TestCase):
    """Test redirection extraction."""

    def test_truncate(self):
        clean, redirects = extract_redirections("echo hi > out.txt")
        self.assertEqual(clean, "echo hi")
        self.assertEqual(redirects, [Redirect(RedirectType.WRITE, "out.txt")])

    def test_append(self):
        clean, redirects = extract_redirections("echo hi >> log.txt")
        self.assertEqual(clean, "echo hi")
        self.assertEqual(redirects, [Redirect(RedirectType.APPEND, "log.txt")])

    def test_no_spaces(self):
        clean, redirects = extract_redirections("echo hi>out.txt")
        self.assertEqual(clean, "echo hi")
        self.assertEqual(redirects[0].target, "out.txt")

    def test_stderr_and_duplicate(self):
        clean, redirects = extract_redirections("cat missing > out.txt 2>&1")
        self.assertEqual(clean, "cat missing")
        self.assertEqual(redirects, [
            Redirect(RedirectType.WRITE, "out.txt", fd=1),
            Redirect(RedirectType.DUPLICATE, "&1", fd=2),
        ])

    def test_stderr_to_file(self):
        clean, redirects = extract_redirections("cat missing 2> errors.txt")
        self.assertEqual(clean, "cat missing")
        self.assertEqual(redirects, [Redirect(RedirectType.WRITE, "errors.txt", fd=2)])

    def test_digit_in_word_is_not_a_descriptor(self):
        clean, redirects = extract_redirections("echo file2> out.txt")
        self.assertEqual(clean, "echo file2")
        self.assertEqual(redirects[0].fd, 1)

    def test_quoted_target(self):
        clean, redirects = extract_redirections('echo hi > "my file.txt"')
        self.assertEqual(clean, "echo hi")
        self.assertEqual(redirects[0].target, "my file.txt")

    def test_quoted_arrow_is_literal(self):
        clean, redirects = extract_redirections("echo 'a > b'")
        self.assertEqual(clean, "echo 'a > b'")
        self.assertEqual(redirects, [])


class TestCommandParser(unittest.TestCase):
    """Test the CommandParser facade."""

    def setUp(self):
        self.parser = CommandParser()

    def test_parse_empty(self):
        self.assertEqual(self.parser.parse(""), [])
        self.assertEqual(self.parser.parse("   "), [])

    def test_parse_simple(self):
        cmd = self.parser.parse_simple("grep -i $WORD notes.txt > hits.txt", {"WORD": "todo"})
        self.assertEqual(cmd.name, "grep")
        self.assertEqual(cmd.args, ["-i", "todo", "notes.txt"])
        self.assertEqual(cmd.redirects, [Redirect(RedirectType.WRITE, "hits.txt")])

    def test_expanded_redirect_target(self):
        cmd = self.parser.parse_simple("echo x > $OUT", {"OUT": "result.txt"})
        self.assertEqual(cmd.redirects[0].target, "result.txt")

    def test_only_redirect(self):
        cmd = self.parser.parse_simple("> empty.txt")
        self.assertEqual(cmd.name, "")
        self.assertEqual(cmd.redirects[0].target, "empty.txt")

    def test_split_assignment(self):
        self.assertEqual(split_assignment("NAME=value=x"), ("NAME", "value=x"))
        self.assertEqual(split_assignment("EMPTY="), ("EMPTY", ""))
        self.assertIsNone(split_assignment("1A=b"))
        self.assertIsNone(split_assignment("echo"))


if __name__ == '__main__':
    unittest.main()
