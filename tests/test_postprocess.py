from app.routing.postprocess import build_suggestions, render_reply, sources_footer
from app.search.base import SearchResult


def test_markdown_links_become_anchors():
    out = render_reply("See [the KYC guide](https://www.investonline.in/kyc) for details.")
    assert out == (
        'See <a href="https://www.investonline.in/kyc" target="_blank" rel="noopener noreferrer">'
        "the KYC guide</a> for details."
    )


def test_bare_urls_become_anchors_without_trailing_punctuation():
    out = render_reply("Visit https://www.investonline.in/sip.")
    assert out == (
        'Visit <a href="https://www.investonline.in/sip" target="_blank" rel="noopener noreferrer">'
        "https://www.investonline.in/sip</a>."
    )


def test_paragraphs_and_line_breaks():
    assert render_reply("one\n\ntwo\nthree") == "one<br><br>two<br>three"
    assert render_reply("a\r\n\r\n\r\nb") == "a<br><br>b"


def test_model_markup_is_escaped():
    out = render_reply('<script>alert("x")</script> "https://www.investonline.in"')
    assert "<script>" not in out
    assert "&lt;script&gt;" in out
    assert 'href="https://www.investonline.in"' in out


def test_sources_footer_lists_each_result():
    results = [
        SearchResult("SIP basics", "https://www.investonline.in/sip", "..."),
        SearchResult("KYC", "https://www.investonline.in/kyc", "..."),
    ]
    footer = sources_footer(results)
    assert footer.startswith("<br><br><b>Sources:</b><br>")
    assert footer.count("<a ") == 2
    assert "1. <a" in footer and "2. <a" in footer
    assert sources_footer([]) == ""


def test_suggestions_titles_first_deduped_and_capped():
    results = [
        SearchResult("Start a SIP", "https://a", ""),
        SearchResult("ELSS funds", "https://b", ""),
    ]
    out = build_suggestions(results, ["How do I register?", "start a sip", "What is KYC?", "Talk to support", "Extra"])
    assert out == ["Start a SIP", "ELSS funds", "How do I register?", "What is KYC?", "Talk to support"]
    assert build_suggestions([], []) == []


def test_angle_bracket_urls_drop_the_brackets():
    out = render_reply("See <https://www.investonline.in/kyc> for details.")
    assert out == (
        'See <a href="https://www.investonline.in/kyc" target="_blank" rel="noopener noreferrer">'
        "https://www.investonline.in/kyc</a> for details."
    )


def test_bare_url_stops_at_escaped_markup():
    out = render_reply("Go to https://www.investonline.in/sip>now")
    assert out.startswith('Go to <a href="https://www.investonline.in/sip" ')
    assert out.endswith("https://www.investonline.in/sip</a>&gt;now")


def test_query_string_ampersand_stays_in_link():
    out = render_reply("Try https://www.investonline.in/search?q=sip&page=2 today")
    assert 'href="https://www.investonline.in/search?q=sip&amp;page=2"' in out
    assert out.endswith("</a> today")
