import pytest

from cloudmpd.application.tokenizer import Tokenizer, tokenize


class TestTokenizer:

    def test_next_word_splits_on_whitespace_runs(self):
        tok = Tokenizer("add  \t track1 x")
        assert tok.next_word() == "add"
        assert tok.next_word() == "track1"
        assert tok.next_word() == "x"
        assert tok.next_word() == ""

    def test_quoted_param_keeps_spaces(self):
        tok = Tokenizer('search any "Comfortably Numb"')
        assert tok.next_param() == "search"
        assert tok.next_param() == "any"
        assert tok.next_param() == "Comfortably Numb"
        assert tok.next_param() == ""

    def test_escapes_inside_quotes(self):
        tok = Tokenizer(r'"a \"b\" \\c"')
        assert tok.next_param() == 'a "b" \\c'

    def test_quoted_param_followed_by_more(self):
        assert tokenize('find "album" "The Wall"  artist') == ["find", "album", "The Wall", "artist"]

    def test_unterminated_quote_returns_accumulated(self):
        tok = Tokenizer('add "half open')
        assert tok.next_param() == "add"
        assert tok.next_param() == "half open"
        assert tok.next_param() == ""

    def test_trailing_backslash_in_quote(self):
        assert Tokenizer('"abc\\').next_param() == "abc"

    @pytest.mark.parametrize("line", ["", "   "])
    def test_empty_input_yields_empty_strings(self, line):
        tok = Tokenizer(line)
        for _ in range(3):
            assert tok.next_param() == ""

    def test_exhausted_tokenizer_never_raises(self):
        tok = Tokenizer("ping")
        assert tok.next_param() == "ping"
        assert tok.next_word() == ""
        assert tok.next_param() == ""

    def test_params_stop_at_first_empty(self):
        assert tokenize('add "" track') == ["add"]
        assert Tokenizer("status").params() == ["status"]
