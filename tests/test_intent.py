from concierge.intent import detect_intent


def test_fintech_rebrand_maps_to_brand_and_finance():
    intent = detect_intent("We're a fintech startup looking to rebrand")
    assert intent.capabilities == ["brand-strategy"]
    assert "finance" in intent.industries
    assert "technology" in intent.industries


def test_multiple_matches_are_unioned_and_sorted():
    intent = detect_intent("Video and social campaigns for a healthcare nonprofit")
    assert intent.capabilities == ["creative-direction", "social-strategy", "video-production"]
    assert intent.industries == ["healthcare", "non-profit"]


def test_matching_is_case_insensitive():
    assert detect_intent("BRANDING for RETAIL").industries == ["retail"]


def test_unrelated_query_yields_no_filters():
    intent = detect_intent("hello there")
    assert intent.is_empty


def test_approach_does_not_trigger_experience_design():
    assert "experience-design" not in detect_intent("How do you approach pricing?").capabilities
