"""System prompt rendering and message composition."""

from asktrevor.api.schemas import ChatMessageIn
from asktrevor.service import prompts


class TestCouncilPrompt:
    def test_includes_project_context_and_documents(self):
        context = prompts.CouncilContext(
            project_context="Granny flat at 12 Smith St",
            uploaded_documents=(
                prompts.DocumentRef(document_type="DA Approval", file_name="da.pdf"),
                prompts.DocumentRef(document_type="BASIX", file_name="basix.pdf"),
            ),
        )
        rendered = prompts.council_system_prompt(context)
        assert "Project Context: Granny flat at 12 Smith St" in rendered
        assert "Uploaded Documents:\n- DA Approval: da.pdf\n- BASIX: basix.pdf" in rendered

    def test_omits_empty_blocks(self):
        rendered = prompts.council_system_prompt(prompts.CouncilContext())
        assert "Project Context:" not in rendered
        assert "Uploaded Documents:" not in rendered
        assert "Principal Certifying Authority" in rendered


class TestOtherSystemPrompts:
    def test_document_prompt_names_document(self):
        rendered = prompts.document_system_prompt(
            prompts.DocumentContext(document_title="Site Plan Notes", document_type="plan")
        )
        assert "The user is creating a document: Site Plan Notes (type: plan)" in rendered

    def test_demo_prompt_is_limited(self):
        assert "THIS IS A LIMITED DEMO" in prompts.demo_system_prompt()

    def test_project_info_default_context(self):
        rendered = prompts.project_info_system_prompt(prompts.ProjectInfoContext())
        assert "No project details provided yet." in rendered
        assert "roofArea" in rendered


class TestEmailPrompts:
    def test_follow_up_prompt_carries_quote_details(self):
        system, user = prompts.follow_up_email_prompts(
            prompts.FollowUpContext(
                contact_name="Priya",
                project_title="Kitchen renovation",
                project_name="Smith residence",
                quote="$42,000",
                submitted_date="3 June 2024",
            )
        )
        assert "follow-up email" in system
        assert "Write a brief follow-up email to Priya regarding the Kitchen renovation quote for Smith residence." in user
        assert "- Quote amount: $42,000" in user

    def test_generate_email_fresh_vs_threaded(self):
        fresh = prompts.EmailDraftContext(
            email_type="accept", consultant_name="Sam", company="Acme Engineering", task_title="Soil test"
        )
        threaded = prompts.EmailDraftContext(
            email_type="accept",
            consultant_name="Sam",
            company="Acme Engineering",
            task_title="Soil test",
            has_existing_thread=True,
        )
        _, fresh_user = prompts.generate_email_prompts(fresh)
        _, threaded_user = prompts.generate_email_prompts(threaded)
        assert fresh_user.startswith("Write a professional email to Sam from Acme Engineering")
        assert threaded_user.startswith("We have an existing email thread with Sam from Acme Engineering")

    def test_every_email_type_has_templates(self):
        for email_type in prompts.EMAIL_TYPES:
            system, user = prompts.generate_email_prompts(
                prompts.EmailDraftContext(
                    email_type=email_type, consultant_name="A", company="B", task_title="C"
                )
            )
            assert system and "A from B" in user


class TestTeamBriefPrompts:
    def test_split_mode_requests_json(self):
        system, user = prompts.team_brief_prompts(
            prompts.TeamBriefContext(master_brief="New duplex with pool")
        )
        assert "Return ONLY valid JSON" in system
        assert "New duplex with pool" in user

    def test_modify_mode_without_current_brief(self):
        system, user = prompts.team_brief_prompts(
            prompts.TeamBriefContext(role="Surveyor", modification="Add contour survey")
        )
        assert "Return ONLY the updated brief text" in system
        assert "Current brief for Surveyor:\n\nNo brief yet" in user
        assert "Add contour survey" in user


class TestComposeMessages:
    def test_system_message_prepended_history_untouched(self):
        history = [
            {"role": "user", "content": "What is a CC?"},
            {"role": "assistant", "content": "A Construction Certificate."},
            {"role": "user", "content": "  And an OC?  "},
        ]
        composed = prompts.compose_messages("SYSTEM", history)
        assert composed[0] == {"role": "system", "content": "SYSTEM"}
        assert composed[1:] == history

    def test_accepts_model_instances(self):
        history = [ChatMessageIn(role="user", content="hi")]
        composed = prompts.compose_messages("S", history)
        assert composed == [
            {"role": "system", "content": "S"},
            {"role": "user", "content": "hi"},
        ]

    def test_update_field_tool_lists_fields(self):
        tool = prompts.update_field_tool()
        enum = tool["function"]["parameters"]["properties"]["field"]["enum"]
        assert enum == ["ceilingHeight", "roofArea", "wallHeight"]
