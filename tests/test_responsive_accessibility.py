from diagramloop.checks import AccessibilityValidator, ResponsiveValidator
from diagramloop.models import Category, RenderSnapshot, Severity, Viewport, ViewportMetrics


PHONE = Viewport(width=375, height=667)
TABLET = Viewport(width=768, height=1024)
DESKTOP = Viewport(width=1280, height=720)


def _snapshot(overflowing=(), **metrics):
    vps = (PHONE, TABLET, DESKTOP)
    return RenderSnapshot(
        screenshot=b"png",
        viewports=vps,
        per_viewport_metrics={
            vp.label: ViewportMetrics(has_horizontal_overflow=vp in overflowing, **metrics) for vp in vps
        },
    )


def test_overflow_only_on_phone_gives_one_warning():
    issues = ResponsiveValidator().check(_snapshot(overflowing=(PHONE,)))
    assert len(issues) == 1
    issue = issues[0]
    assert issue.severity is Severity.WARNING
    assert issue.category is Category.RESPONSIVE
    assert "375x667" in issue.message


def test_no_overflow_no_issues():
    assert ResponsiveValidator().check(_snapshot()) == []


def test_overflow_on_every_viewport():
    issues = ResponsiveValidator().check(_snapshot(overflowing=(PHONE, TABLET, DESKTOP)))
    assert len(issues) == 3
    for issue, vp in zip(issues, (PHONE, TABLET, DESKTOP)):
        assert f"at {vp.label} viewport" in issue.message


def test_text_scan_finds_missing_alt_and_landmarks():
    markup = """<html><body>
      <div><img src="a.png"><img src="b.png" alt=""><img src="c.png" alt="Flow chart"></div>
      <button><i data-lucide="x"></i></button>
      <button aria-label="Close"><i data-lucide="x"></i></button>
      <button>Save</button>
    </body></html>"""
    issues = AccessibilityValidator().check(markup)
    messages = [i.message for i in issues]
    assert "2 image(s) missing alt text" in messages
    assert any("semantic sectioning" in m for m in messages)
    assert "1 button(s) missing accessible text" in messages
    assert all(i.severity is Severity.WARNING and i.category is Category.ACCESSIBILITY for i in issues)


def test_landmarks_and_alt_text_pass_the_text_scan():
    markup = '<html><body><main><img src="a.png" alt="Architecture"></main></body></html>'
    assert AccessibilityValidator().check(markup) == []


def test_dom_metrics_take_precedence_over_markup():
    # scripts added the images at runtime, so the text alone looks clean
    markup = "<html><body><main>loading</main></body></html>"
    snap = _snapshot(images_missing_alt=3, landmark_count=1)
    messages = [i.message for i in AccessibilityValidator().check(markup, snap)]
    assert messages == ["3 image(s) missing alt text"]
