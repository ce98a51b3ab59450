"""
DeepWiki Backend — Markdown Utility Tests
===========================================

What:  TOC extraction, title/slug derivation, upload decoding and search
       suggestions.
"""

from deepwiki.services import markdown_service as md


class TestHeadingId:
    def test_lowercases_and_joins(self):
        assert md.heading_id("Getting Started") == "getting-started"

    def test_drops_punctuation(self):
        assert md.heading_id("What's New?") == "whats-new"


class TestExtractHeadings:
    def test_two_level_hierarchy(self):
        content = (
            "# Title\n\n"
            "## Install\n"
            "### Linux\n"
            "### macOS\n"
            "## Usage\n"
            "text\n"
        )
        toc = md.extract_headings(content)

        assert [s.heading.text for s in toc] == ["Install", "Usage"]
        assert [c.text for c in toc[0].children] == ["Linux", "macOS"]
        assert toc[0].children[0].id == "linux"
        assert toc[0].children[0].level == 3
        assert toc[1].children == []

    def test_h1_and_h4_ignored(self):
        toc = md.extract_headings("# Title\n#### Deep\n## Only\n")
        assert len(toc) == 1
        assert toc[0].heading.id == "only"

    def test_orphan_h3_skipped(self):
        toc = md.extract_headings("### Orphan\n## Section\n### Child\n")
        assert len(toc) == 1
        assert [c.text for c in toc[0].children] == ["Child"]

    def test_empty_content(self):
        assert md.extract_headings("") == []


class TestExtractTitle:
    def test_front_matter_title_wins(self):
        content = "---\ntitle: From Front Matter\n---\n# From Heading\n"
        assert md.extract_title(content) == "From Front Matter"

    def test_first_h1(self):
        assert md.extract_title("intro\n# Project Docs\n## Part\n") == "Project Docs"

    def test_filename_fallback(self):
        assert md.extract_title("no headings", "getting_started.md") == "Getting Started"

    def test_untitled(self):
        assert md.extract_title("just text") == "Untitled Wiki"

    def test_broken_front_matter_falls_back_to_heading(self):
        content = "---\ntitle: [unclosed\n---\n# Real Title\n"
        assert md.extract_title(content) == "Real Title"


class TestSlugs:
    def test_slugify_title(self):
        assert md.slugify_title("Don't Panic!") == "dont-panic"

    def test_slugify_symbols_only(self):
        assert md.slugify_title("!!!") == "wiki"

    def test_page_filename(self):
        assert md.page_filename("My Page!") == "my-page.md"

    def test_page_filename_blank(self):
        assert md.page_filename("???") == "untitled.md"


class TestNormalizeContent:
    def test_utf8_passthrough(self):
        assert md.normalize_content("héllo\n".encode("utf-8")) == "héllo\n"

    def test_bom_removed(self):
        assert md.normalize_content(b"\xef\xbb\xbf# Title") == "# Title"

    def test_invalid_bytes_cleaned(self):
        text = md.normalize_content(b"ok\xff\xfe text\x00\tend\n", "bad.md")
        assert text == "ok text\tend\n"


class TestChecksums:
    def test_content_size_is_utf8_bytes(self):
        assert md.content_size("é") == 2

    def test_checksum_stable(self):
        assert md.checksum("abc") == "900150983cd24fb0d6963f7d28e17f72"


class TestSuggestCompletions:
    CONTENTS = ["Deploy with docker. Docker compose runs it.", "", "dock, docks!"]

    def test_words_and_sentences_shortest_first(self):
        assert md.suggest_completions(self.CONTENTS, "dock") == [
            "docks",
            "docker",
            "Docker compose runs it",
        ]

    def test_exact_word_not_suggested(self):
        assert "dock" not in md.suggest_completions(self.CONTENTS, "Dock")

    def test_limit(self):
        assert md.suggest_completions(self.CONTENTS, "dock", limit=1) == ["docks"]

    def test_blank_query(self):
        assert md.suggest_completions(self.CONTENTS, "  ") == []
