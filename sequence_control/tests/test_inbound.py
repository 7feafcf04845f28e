"""Tests for inbound message handling and the funnel-stage hooks."""

from unittest.mock import patch

import pytest

from sequence_control.tests.conftest import make_contact, make_job, make_sequence

CONTACT_ID = "5215512345678@s.whatsapp.net"
PHONE = "5215512345678"


@pytest.fixture
def definitions(fake_db):
    """NuevoLead + WebPromo definitions in the store."""
    fake_db.store["sequences"].extend([
        make_sequence(id="NuevoLead", trigger="NuevoLead", name="Nuevo lead"),
        make_sequence(id="WebPromo", trigger="WebPromo", name="Web Promo"),
    ])
    return fake_db


def _contact_row(fake_db):
    return next(c for c in fake_db.store["contacts"] if c["id"] == CONTACT_ID)


class TestHandleInboundMessage:
    def test_new_contact_enrolled_in_default(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        result = handle_inbound_message(CONTACT_ID, PHONE, "Hola, quiero info", "Ana María")

        assert result.status == "enrolled"
        assert result.created is True
        assert result.trigger == "NuevoLead"
        assert result.source == "default"
        assert result.scheduled == 3

        contact = _contact_row(definitions)
        assert contact["display_name"] == "Ana María"
        assert contact["tags"] == ["NuevoLead"]
        assert contact["has_active_sequences"] is True
        assert len(definitions.jobs(trigger="NuevoLead", status="pending")) == 3

        inbound = definitions.store["contact_messages"][0]
        assert inbound["sender"] == "contact"
        assert inbound["content"] == "Hola, quiero info"

    def test_existing_contact_without_hashtag_only_recorded(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        definitions.store["contacts"].append(make_contact())

        result = handle_inbound_message(CONTACT_ID, PHONE, "gracias!")

        assert result.status == "recorded"
        assert definitions.store["sequence_jobs"] == []
        assert len(definitions.store["contact_messages"]) == 1

    def test_alias_reenrolls_and_cancels_companions(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        definitions.store["contacts"].append(make_contact(tags=["NuevoLead"]))
        definitions.store["sequence_jobs"].extend([
            make_job(trigger="NuevoLead", step_index=i) for i in range(3)
        ])

        result = handle_inbound_message(CONTACT_ID, PHONE, "Vi el anuncio #webPromo")

        assert result.status == "enrolled"
        assert result.trigger == "WebPromo"
        assert result.source == "alias"
        assert result.cancelled == 3
        assert definitions.jobs(trigger="NuevoLead") == []
        assert len(definitions.jobs(trigger="WebPromo", status="pending")) == 3
        assert _contact_row(definitions)["tags"] == ["NuevoLead", "WebPromo"]

    def test_dynamic_rule_from_store(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        definitions.store["sequences"].append(make_sequence(id="Verano", trigger="Verano"))
        definitions.store["trigger_rules"].append(
            {"hashtag": "webpromo", "trigger": "Verano", "cancel_triggers": [], "active": True}
        )

        result = handle_inbound_message(CONTACT_ID, PHONE, "#WebPromo")

        assert result.trigger == "Verano"
        assert result.source == "dynamic"
        assert definitions.jobs(trigger="WebPromo") == []

    def test_paused_contact_suppressed(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        definitions.store["contacts"].append(make_contact(seq_paused=True))

        result = handle_inbound_message(CONTACT_ID, PHONE, "#webpromo")

        assert result.status == "suppressed"
        assert result.reason == "paused"
        assert definitions.store["sequence_jobs"] == []

    def test_converted_contact_suppressed(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        definitions.store["contacts"].append(make_contact(tags=["Compro"]))

        result = handle_inbound_message(CONTACT_ID, PHONE, "#webpromo")

        assert result.reason == "converted"
        assert definitions.store["sequence_jobs"] == []

    def test_intake_completed_blocks_top_of_funnel(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        definitions.store["contacts"].append(make_contact(tags=["FormOK"]))

        result = handle_inbound_message(CONTACT_ID, PHONE, "#webpromo")

        assert result.reason == "intake_completed"

    def test_opt_out(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        definitions.store["contacts"].append(make_contact(has_active_sequences=True))
        definitions.store["sequence_jobs"].extend([
            make_job(trigger="NuevoLead"),
            make_job(trigger="WebPromo"),
            make_job(trigger="WebPromo", status="sent"),
        ])

        result = handle_inbound_message(CONTACT_ID, PHONE, "  STOP ")

        assert result.status == "opted_out"
        assert result.cancelled == 2
        contact = _contact_row(definitions)
        assert contact["seq_paused"] is True
        assert contact["has_active_sequences"] is False
        assert definitions.jobs(status="pending") == []
        assert len(definitions.jobs(status="sent")) == 1

    def test_group_chat_ignored(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        result = handle_inbound_message("120363000000@g.us", "", "#webpromo")

        assert result.status == "ignored"
        assert definitions.store["contacts"] == []
        assert definitions.store["contact_messages"] == []

    def test_own_message_ignored(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        result = handle_inbound_message(CONTACT_ID, PHONE, "#webpromo", from_me=True)

        assert result.status == "ignored"
        assert definitions.store["sequence_jobs"] == []

    def test_auto_save_disabled(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message

        with patch("sequence_control.services.inbound.AUTO_SAVE_CONTACTS", False):
            result = handle_inbound_message(CONTACT_ID, PHONE, "hola")

        assert result.status == "ignored"
        assert result.reason == "auto_save_disabled"
        assert definitions.store["contacts"] == []

    @pytest.mark.parametrize("text,expected", [
        ("STOP", True),
        ("baja.", True),
        ("¡Alto!", True),
        ("no me den de baja", False),
        ("", False),
    ])
    def test_is_opt_out(self, text, expected):
        from sequence_control.services.inbound import is_opt_out

        assert is_opt_out(text) is expected


class TestFunnelHooks:
    def test_mark_converted(self, fake_db):
        from sequence_control.services.inbound import mark_converted

        fake_db.store["contacts"].append(make_contact(tags=["NuevoLead"]))
        fake_db.store["sequence_jobs"].extend([make_job(trigger="NuevoLead"), make_job(trigger="X")])

        assert mark_converted(CONTACT_ID) == 2

        contact = _contact_row(fake_db)
        assert contact["tags"] == ["NuevoLead", "Compro"]
        assert contact["stage"] == "cliente"
        assert fake_db.jobs(status="pending") == []

    def test_mark_converted_unknown_contact(self, fake_db):
        from sequence_control.services.inbound import mark_converted

        with pytest.raises(LookupError):
            mark_converted("nadie@s.whatsapp.net")

    def test_mark_form_submitted_cancels_top_of_funnel(self, fake_db):
        from sequence_control.services.inbound import mark_form_submitted

        fake_db.store["contacts"].append(make_contact())
        fake_db.store["sequence_jobs"].extend([
            make_job(trigger="NuevoLead"),
            make_job(trigger="WebPromo"),
            make_job(trigger="WebEnviada"),
        ])

        assert mark_form_submitted(CONTACT_ID) == 2

        assert _contact_row(fake_db)["tags"] == ["FormOK"]
        assert [j["trigger"] for j in fake_db.jobs(status="pending")] == ["WebEnviada"]

    def test_mark_form_submitted_explicit_triggers(self, fake_db):
        from sequence_control.services.inbound import mark_form_submitted

        fake_db.store["contacts"].append(make_contact())
        fake_db.store["sequence_jobs"].extend([make_job(trigger="NuevoLead"), make_job(trigger="X")])

        assert mark_form_submitted(CONTACT_ID, ["X"]) == 1
        assert [j["trigger"] for j in fake_db.jobs(status="pending")] == ["NuevoLead"]

    def test_hooks_write_configured_values(self, fake_db):
        from sequence_control.services.inbound import mark_converted, mark_form_submitted
        from sequence_control.services.suppression import SuppressionPolicy

        policy = SuppressionPolicy.from_config({
            "converted_tags": ["Pagado", "Compro"],
            "converted_stages": ["purchased"],
            "intake_tags": ["Intake"],
            "top_of_funnel_triggers": ["NuevoLead"],
        })
        fake_db.store["contacts"].append(make_contact())

        with patch("sequence_control.services.inbound.get_policy", return_value=policy):
            mark_form_submitted(CONTACT_ID)
            mark_converted(CONTACT_ID)

        contact = _contact_row(fake_db)
        assert contact["tags"] == ["Intake", "Pagado"]
        assert contact["stage"] == "purchased"
        assert policy.reason(contact, "WebEnviada") == "converted"

    def test_converted_contact_cannot_reenroll(self, definitions):
        from sequence_control.services.inbound import handle_inbound_message, mark_converted

        definitions.store["contacts"].append(make_contact())
        mark_converted(CONTACT_ID)

        result = handle_inbound_message(CONTACT_ID, PHONE, "#webpromo")

        assert result.status == "suppressed"
        assert definitions.store["sequence_jobs"] == []
