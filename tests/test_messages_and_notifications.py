import pytest

from marcai.service import messages
from marcai.service.errors import (
    AuthenticationExpiredError,
    AuthenticationInvalidError,
    ForbiddenError,
    RateLimitedError,
    ServerError,
    error_for_response,
)
from marcai.service.notifications import NotificationChannel, NotificationLevel


class TestStatusMessages:
    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422, 429, 500, 503])
    def test_every_listed_status_has_a_dedicated_message(self, status):
        text = messages.message_for_status(status)

        assert text == messages.STATUS_MESSAGES[status]
        assert text != messages.GENERIC_ERROR

    @pytest.mark.parametrize("status", [402, 409, 502, 504])
    def test_unlisted_status_uses_generic_message(self, status):
        assert messages.message_for_status(status) == messages.GENERIC_ERROR

    def test_server_text_wins_for_client_errors(self):
        text = messages.message_for_status(400, {"success": False, "error": "Telefone obrigatório"})

        assert text == "Telefone obrigatório"

    def test_server_text_is_ignored_for_401_and_5xx(self):
        payload = {"error": "Token inválido"}

        assert messages.message_for_status(401, payload) == messages.STATUS_MESSAGES[401]
        assert messages.message_for_status(503, payload) == messages.STATUS_MESSAGES[503]


class TestFlattenValidationErrors:
    def test_list_of_strings(self):
        payload = {"errors": ["Nome é obrigatório", " ", "Email inválido"]}

        assert messages.flatten_validation_errors(payload) == ["Nome é obrigatório", "Email inválido"]

    def test_list_of_objects(self):
        payload = {"details": [{"path": "email", "msg": "inválido"}, {"message": "sem campo"}]}

        assert messages.flatten_validation_errors(payload) == ["email: inválido", "sem campo"]

    def test_mapping_of_fields(self):
        payload = {"errors": {"nome": ["obrigatório", "curto demais"], "idade": "número"}}

        assert messages.flatten_validation_errors(payload) == [
            "nome: obrigatório",
            "nome: curto demais",
            "idade: número",
        ]

    def test_422_without_field_errors_uses_server_text(self):
        assert messages.message_for_status(422, {"error": "Horário ocupado"}) == "Horário ocupado"

    def test_non_dict_payload(self):
        assert messages.flatten_validation_errors("oops") == []


class TestErrorForResponse:
    def test_expiry_marker_selects_recoverable_error(self):
        error = error_for_response(401, {"error": "Token expirado", "code": "TOKEN_EXPIRED"})

        assert isinstance(error, AuthenticationExpiredError)
        assert error.message == "Token expirado"

    def test_401_without_marker_is_terminal(self):
        assert isinstance(error_for_response(401, {"error": "Token inválido"}), AuthenticationInvalidError)

    @pytest.mark.parametrize(
        "status,cls",
        [(403, ForbiddenError), (429, RateLimitedError), (500, ServerError), (503, ServerError)],
    )
    def test_status_mapping(self, status, cls):
        error = error_for_response(status, None)

        assert isinstance(error, cls)
        assert error.status_code == status

    def test_forced_logout_message_counts_seconds(self):
        assert "30 segundos" in messages.forced_logout_message(30)


class TestNotificationChannel:
    def test_default_durations(self):
        channel = NotificationChannel(default_duration_ms=4000, error_duration_ms=5000)

        assert channel.success("ok").duration_ms == 4000
        assert channel.info("fyi").duration_ms == 4000
        assert channel.warning("hm").duration_ms == 4000
        assert channel.error("bad").duration_ms == 5000

    def test_subscribers_receive_in_order_and_can_unsubscribe(self):
        channel = NotificationChannel()
        received = []
        unsubscribe = channel.subscribe(lambda n: received.append(n.message))

        channel.info("first")
        channel.info("second")
        unsubscribe()
        channel.info("third")

        assert received == ["first", "second"]
        assert [n.message for n in channel.history] == ["first", "second", "third"]

    def test_failing_subscriber_does_not_block_others(self):
        channel = NotificationChannel()
        received = []

        def broken(notification):
            raise RuntimeError("render failed")

        channel.subscribe(broken)
        channel.subscribe(received.append)
        channel.error("still delivered")

        assert [n.message for n in received] == ["still delivered"]

    def test_loading_then_update(self):
        channel = NotificationChannel()
        loading_id = channel.loading()

        pending = channel.history[-1]
        assert pending.level == NotificationLevel.LOADING
        assert pending.duration_ms is None
        assert pending.dismissible is False

        final = channel.update(loading_id, NotificationLevel.SUCCESS, "Salvo")

        assert final.id == loading_id
        assert final.message == "Salvo"
        assert final.duration_ms == channel.default_duration_ms
        assert final.dismissible is True

    def test_history_is_bounded(self):
        channel = NotificationChannel(history_size=3)
        for i in range(5):
            channel.info(str(i))

        assert [n.message for n in channel.history] == ["2", "3", "4"]
