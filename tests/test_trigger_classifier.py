import pytest

from recall.src.core.trigger_classifier import RecallTriggerClassifier, should_retrieve


@pytest.mark.parametrize(
    "text",
    [
        "Who is Sam?",
        "what does my brother do for a living",
        "What is my favorite animal?",
        "I prefer dark mode, remember that",
        "What did we discuss yesterday?",
        "you mentioned a recipe earlier",
        "like I told you before",
        "can you check my resume",
        "summarise the file I uploaded",
        "what's my name",
        "did I ever say where I live?",
    ],
)
def test_memory_questions_trigger_retrieval(text):
    assert should_retrieve(text) is True


@pytest.mark.parametrize("text", ["hello!", "write a haiku about autumn", "2 + 2 = ?", "", "   ", None, 42])
def test_ordinary_messages_do_not_trigger(text):
    assert should_retrieve(text) is False


def test_classify_reports_categories():
    assessment = RecallTriggerClassifier().classify("who is the person on my resume")
    assert assessment["retrieve"] is True
    assert "third_person" in assessment["categories"]
    assert "document" in assessment["categories"]
    assert "who is" in assessment["matched"]


def test_custom_vocabulary():
    classifier = RecallTriggerClassifier(keywords={"project": ("roadmap",)}, patterns={})
    assert classifier.should_retrieve("show the ROADMAP") is True
    assert classifier.should_retrieve("who is Sam") is False
