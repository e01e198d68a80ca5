"""
Tests for LoginFlow: landing, credentials, CAPTCHA loop, MFA, failures.
"""

import json
from urllib.parse import parse_qs, urlparse

import pytest

from audible_session.exceptions import CaptchaError, LoginError, MfaError
from audible_session.login import LoginFlow, LoginState, build_metadata
from conftest import NOW, FakeResponse, FakeTransport, RecordingChallenges

SIGNIN_PAGE = (
    '<form name="signIn">'
    '<input type="hidden" name="appActionToken" value="tok1">'
    '<input type="hidden" name="workflowState" value="wf1">'
    "</form>"
)

MFA_PAGE = (
    '<form id="auth-mfa-form">'
    '<input type="hidden" name="verifyToken" value="mfa-verify">'
    '<input type="hidden" name="rememberDevice" value="">'
    "</form>"
)


def captcha_page(url):
    return (
        '<div id="auth-captcha-image-container"><img src="' + url + '"></div>'
        '<input type="hidden" name="appActionToken" value="captcha-tok">'
    )


def error_page(message):
    return (
        '<div id="auth-error-message-box"><div><h4>There was a problem</h4>'
        "<ul><li><span>  " + message + "  </span></li></ul></div></div>"
    )


def landing():
    return FakeResponse(cookies={"session-id": "139-1", "session-token": "landing-tok"})


def authorized(token="Atna%7Ctoken"):
    location = (
        "https://www.amazon.com/ap/maplanding?openid.assoc_handle=amzn_audible_ios_us"
        f"&openid.oa2.access_token={token}&openid.mode=id_res"
    )
    return FakeResponse(302, headers=[("location", location)], cookies={"at-main": "Atza|1"})


def make_flow(responses, challenges=None, fake_crypto=None, **kwargs):
    transport = FakeTransport(responses)
    flow = LoginFlow(
        "user@example.com",
        "hunter2",
        locale="us",
        challenges=challenges or RecordingChallenges(),
        crypto=fake_crypto,
        transport=transport,
        clock=lambda: NOW,
        **kwargs,
    )
    return flow, transport


def posted(request):
    return {k: v[0] for k, v in parse_qs(request.data, keep_blank_values=True).items()}


class TestSuccessfulLogin:
    """Straight path: landing → credentials → token redirect."""

    def test_returns_token_and_cookies(self, fake_crypto):
        flow, transport = make_flow(
            [landing(), FakeResponse(text=SIGNIN_PAGE), authorized()],
            fake_crypto=fake_crypto,
        )
        result = flow.run()
        assert result.access_token == "Atna|token"
        assert result.cookies["session-token"] == "landing-tok"
        assert result.cookies["at-main"] == "Atza|1"
        assert flow.state == LoginState.AUTHORIZED
        assert len(transport.requests) == 3

    def test_credentials_post(self, fake_crypto):
        flow, transport = make_flow(
            [landing(), FakeResponse(text=SIGNIN_PAGE), authorized()],
            fake_crypto=fake_crypto,
        )
        flow.run()
        post = transport.requests[2]
        assert post.method == "POST"
        assert post.url == "https://www.amazon.com/ap/signin"
        assert post.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert "session-token=landing-tok" in post.headers["Cookie"]
        fields = posted(post)
        assert fields["appActionToken"] == "tok1"
        assert fields["workflowState"] == "wf1"
        assert fields["email"] == "user@example.com"
        assert fields["password"] == "hunter2"
        assert fields["metadata1"] == "ECdITeCs:fake"

    def test_oauth_page_request(self, fake_crypto):
        flow, transport = make_flow(
            [landing(), FakeResponse(text=SIGNIN_PAGE), authorized()],
            fake_crypto=fake_crypto,
        )
        flow.run()
        oauth = transport.requests[1]
        parsed = urlparse(oauth.url)
        assert oauth.method == "GET"
        assert parsed.path == "/ap/signin"
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert query["openid.assoc_handle"] == "amzn_audible_ios_us"
        assert query["marketPlaceId"] == "AF2M0KC94RCEA"
        assert query["openid.oa2.scope"] == "device_auth_access"
        assert query["openid.return_to"] == "https://www.amazon.com/ap/maplanding"
        assert transport.requests[2].headers["Referer"] == oauth.url

    def test_metadata_passed_to_crypto(self, fake_crypto):
        flow, transport = make_flow(
            [landing(), FakeResponse(text=SIGNIN_PAGE), authorized()],
            fake_crypto=fake_crypto,
        )
        flow.run()
        assert len(fake_crypto.metadata) == 1
        metadata = json.loads(fake_crypto.metadata[0])
        assert metadata["location"] == transport.requests[1].url
        assert metadata["start"] == NOW * 1000

    def test_landing_repeats_until_session_token(self, fake_crypto):
        flow, transport = make_flow(
            [
                FakeResponse(cookies={"session-id": "139-1"}),
                FakeResponse(cookies={"ubid-main": "131-1"}),
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                authorized(),
            ],
            fake_crypto=fake_crypto,
        )
        result = flow.run()
        assert [r.url for r in transport.requests[:3]] == ["https://www.amazon.com/"] * 3
        assert result.cookies["ubid-main"] == "131-1"
        assert "Cookie" not in transport.requests[0].headers


class TestCaptcha:
    """CAPTCHA loop."""

    def test_two_captchas_then_authorized(self, fake_crypto):
        challenges = RecordingChallenges(captcha_answers=["abcd", "efgh"])
        flow, transport = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                FakeResponse(text=captcha_page("https://captcha.example/1.jpg")),
                FakeResponse(text=captcha_page("https://captcha.example/2.jpg")),
                authorized(),
            ],
            challenges=challenges,
            fake_crypto=fake_crypto,
        )
        result = flow.run()
        assert challenges.captcha_urls == [
            "https://captcha.example/1.jpg",
            "https://captcha.example/2.jpg",
        ]
        assert result.access_token == "Atna|token"
        first, second = posted(transport.requests[3]), posted(transport.requests[4])
        assert first["guess"] == "abcd"
        assert second["guess"] == "efgh"
        assert first["appActionToken"] == "captcha-tok"
        assert first["use_image_captcha"] == "true"
        assert first["use_audio_captcha"] == "false"
        assert first["showPasswordChecked"] == "false"
        assert first["email"] == "user@example.com"
        assert first["password"] == "hunter2"

    def test_rejected_guess_raises_captcha_error(self, fake_crypto):
        challenges = RecordingChallenges(captcha_answers=["wrong"])
        flow, _ = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                FakeResponse(text=captcha_page("https://captcha.example/1.jpg")),
                FakeResponse(text=error_page("Enter the characters as they are shown in the image.")),
            ],
            challenges=challenges,
            fake_crypto=fake_crypto,
        )
        with pytest.raises(CaptchaError) as exc_info:
            flow.run()
        assert exc_info.value.message == "Enter the characters as they are shown in the image."
        assert flow.state == LoginState.FAILED


class TestMfa:
    """OTP challenge."""

    def test_mfa_then_authorized(self, fake_crypto):
        challenges = RecordingChallenges(otp_answers=["123456"])
        flow, transport = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                FakeResponse(302, headers=[("location", "/ap/mfa?arb=xyz")]),
                FakeResponse(text=MFA_PAGE),
                authorized(),
            ],
            challenges=challenges,
            fake_crypto=fake_crypto,
        )
        result = flow.run()
        assert result.access_token == "Atna|token"
        assert challenges.otp_calls == 1

        mfa_get = transport.requests[3]
        assert mfa_get.method == "GET"
        assert mfa_get.url == "https://www.amazon.com/ap/mfa?arb=xyz"

        mfa_post = transport.requests[4]
        assert mfa_post.url == "https://www.amazon.com/ap/signin"
        assert mfa_post.headers["Referer"] == "https://www.amazon.com/ap/mfa?arb=xyz"
        fields = posted(mfa_post)
        assert fields["otpCode"] == "123456"
        assert fields["mfaSubmit"] == "Submit"
        assert fields["verifyToken"] == "mfa-verify"
        assert "password" not in fields

    def test_absolute_mfa_location(self, fake_crypto):
        challenges = RecordingChallenges(otp_answers=["654321"])
        flow, transport = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                FakeResponse(302, headers=[("location", "https://www.amazon.com/ap/mfa?arb=abs")]),
                FakeResponse(text=MFA_PAGE),
                authorized(),
            ],
            challenges=challenges,
            fake_crypto=fake_crypto,
        )
        flow.run()
        assert transport.requests[3].url == "https://www.amazon.com/ap/mfa?arb=abs"

    def test_rejected_otp_raises_mfa_error(self, fake_crypto):
        challenges = RecordingChallenges(otp_answers=["000000"])
        flow, _ = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                FakeResponse(302, headers=[("location", "/ap/mfa?arb=xyz")]),
                FakeResponse(text=MFA_PAGE),
                FakeResponse(text=error_page("The code you entered is not valid.")),
            ],
            challenges=challenges,
            fake_crypto=fake_crypto,
        )
        with pytest.raises(MfaError, match="The code you entered is not valid."):
            flow.run()


class TestFailures:
    """Terminal failures."""

    def test_error_banner_text(self, fake_crypto):
        flow, _ = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                FakeResponse(text=error_page("Incorrect email or password")),
            ],
            fake_crypto=fake_crypto,
        )
        with pytest.raises(LoginError) as exc_info:
            flow.run()
        assert exc_info.value.message == "Incorrect email or password"
        assert type(exc_info.value) is LoginError

    def test_default_message(self, fake_crypto):
        flow, _ = make_flow(
            [landing(), FakeResponse(text=SIGNIN_PAGE), FakeResponse(text="<html></html>")],
            fake_crypto=fake_crypto,
        )
        with pytest.raises(LoginError, match="Unable to login."):
            flow.run()

    def test_redirect_without_token(self, fake_crypto):
        flow, _ = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                FakeResponse(302, headers=[("location", "https://www.amazon.com/ap/cvf/request")]),
            ],
            fake_crypto=fake_crypto,
        )
        with pytest.raises(LoginError) as exc_info:
            flow.run()
        assert exc_info.value.status_code == 302

    def test_landing_attempts_bounded(self, fake_crypto):
        responses = [FakeResponse(cookies={"session-id": "139-1"}) for _ in range(3)]
        flow, transport = make_flow(responses, fake_crypto=fake_crypto, max_landing_attempts=3)
        with pytest.raises(LoginError, match="session-token"):
            flow.run()
        assert len(transport.requests) == 3

    def test_no_challenge_callbacks_on_failure(self, fake_crypto):
        challenges = RecordingChallenges()
        flow, _ = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE),
                FakeResponse(text=error_page("Incorrect email or password")),
            ],
            challenges=challenges,
            fake_crypto=fake_crypto,
        )
        with pytest.raises(LoginError):
            flow.run()
        assert challenges.captcha_urls == []
        assert challenges.otp_calls == 0


class TestCookieMerging:
    """Empty Set-Cookie values do not clear known cookies."""

    def test_empty_cookie_keeps_value(self, fake_crypto):
        flow, _ = make_flow(
            [
                landing(),
                FakeResponse(text=SIGNIN_PAGE, cookies={"session-token": '""'}),
                authorized(),
            ],
            fake_crypto=fake_crypto,
        )
        result = flow.run()
        assert result.cookies["session-token"] == "landing-tok"


class TestBuildMetadata:
    """Sign-in fingerprint JSON."""

    def test_fields(self):
        metadata = json.loads(build_metadata("UA/1.0", "https://www.amazon.com/ap/signin?x=1", lambda: NOW))
        assert metadata["userAgent"] == "UA/1.0"
        assert metadata["location"] == "https://www.amazon.com/ap/signin?x=1"
        assert metadata["start"] == NOW * 1000
        assert metadata["end"] == NOW * 1000
        assert metadata["performance"]["timing"]["navigationStart"] == NOW * 1000

    def test_compact_separators(self):
        assert ", " not in build_metadata("UA", "loc", lambda: NOW)

    def test_scripts_inventory(self):
        metadata = json.loads(build_metadata("UA", "loc", lambda: NOW))
        assert list(metadata)[list(metadata).index("timeZone") + 1] == "scripts"
        scripts = metadata["scripts"]
        assert scripts["dynamicUrlCount"] == len(scripts["dynamicUrls"]) == 5
        assert scripts["inlineHashesCount"] == len(scripts["inlineHashes"]) == 13
        assert scripts["elapsed"] == 52
        assert scripts["dynamicUrls"][-1].endswith("/login/fwcim._CB454428048_.js")
        assert scripts["inlineHashes"][0] == -1746719145

    def test_collector_metrics(self):
        metrics = json.loads(build_metadata("UA", "loc", lambda: NOW))["metrics"]
        assert len(metrics) == 24
        assert metrics[0] == {"n": "fwcim-mercury-collector", "t": 0}
        assert metrics[18] == {"n": "fwcim-form-input-telemetry-collector", "t": 4}
        assert metrics[-1] == {"n": "fwcim-timer-collector", "t": 0}
        assert all(m["n"].startswith("fwcim-") and m["n"].endswith("-collector") for m in metrics)

    def test_unknown_locale(self):
        with pytest.raises(ValueError):
            LoginFlow("a", "b", locale="xx")
