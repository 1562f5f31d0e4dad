import pytest

from ai_brain.services.memory_service import MAX_IMPORTANCE, calculate_importance, cosine_similarity


def test_exam_message_scores_two_and_a_half():
    message = "I feel really scared about my exam tomorrow???"
    score = calculate_importance(message, {"fear": 0.8, "sadness": 0.2})
    assert score == pytest.approx(2.5)


def test_plain_message_has_base_importance():
    assert calculate_importance("ok", None) == pytest.approx(1.0)
    assert calculate_importance("", {}) == pytest.approx(1.0)


@pytest.mark.parametrize(
    "message,emotions",
    [
        ("?" * 200, {"joy": 1.0, "fear": 1.0, "anger": 1.0}),
        ("I feel " + "x" * 5000, {"joy": 1.0}),
        ("", {"joy": -4.0}),
        ("why?", {"joy": "not-a-number"}),
        ("", None),
    ],
)
def test_importance_stays_within_bounds(message, emotions):
    score = calculate_importance(message, emotions)
    assert 0.0 <= score <= MAX_IMPORTANCE


def test_long_messages_gain_length_bonuses():
    short = calculate_importance("a" * 100, None)
    medium = calculate_importance("a" * 600, None)
    long = calculate_importance("a" * 1200, None)
    assert medium == pytest.approx(short + 0.3)
    assert long == pytest.approx(short + 0.8)


def test_more_salience_intensity_or_length_never_lowers_importance():
    base = "we talked about the weather"
    emotions = {"joy": 0.2}
    score = calculate_importance(base, emotions)

    variants = [
        (base + " and I remember it", emotions),
        (base + " and I think I want more", emotions),
        (base, {"joy": 0.9}),
        (base, {"joy": 0.2, "fear": 0.3}),
        (base + " " + "y" * 600, emotions),
        (base + " " + "y" * 1200, emotions),
        (base + "?", emotions),
    ]
    for message, emo in variants:
        assert calculate_importance(message, emo) >= score


def test_keyword_bonus_is_applied_once():
    one = calculate_importance("I feel fine", None)
    many = calculate_importance("I feel, I think, I remember, I hope", None)
    assert one == pytest.approx(many)


def test_cosine_similarity_handles_unusable_vectors():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity(None, [1.0]) is None
    assert cosine_similarity([], []) is None
    assert cosine_similarity([1.0, 2.0], [1.0]) is None
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) is None
