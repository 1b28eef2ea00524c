from sqlalchemy import select

from autoflow.db.database import async_session
from autoflow.models.workflow import Workflow
from autoflow.services.workflow_service import SYSTEM_OWNER

THREE_DAYS_MS = 3 * 24 * 60 * 60 * 1000

TEMPLATES = [
    {
        "name": "Email Automation - Basic",
        "description": "Upload contacts, generate personalized emails with AI, and send automatically",
        "category": "email_marketing",
        "steps": [
            {
                "id": "step_1",
                "type": "data_source",
                "name": "Upload Contact List",
                "config": {"source_type": "csv_upload", "required_fields": ["email", "name"]},
                "position": {"x": 100, "y": 100},
            },
            {
                "id": "step_2",
                "type": "ai_content",
                "name": "Generate Personalized Emails",
                "config": {
                    "template": "Generate a professional email for {{contact_name}} at {{company}}",
                    "brand_voice": "professional",
                    "per_record": True,
                },
                "position": {"x": 300, "y": 100},
            },
            {
                "id": "step_3",
                "type": "email_send",
                "name": "Send Emails",
                "config": {"email_service": "resend", "from_email": "your-email@company.com"},
                "position": {"x": 500, "y": 100},
            },
        ],
    },
    {
        "name": "AI Lead Analysis & Scoring",
        "description": "Analyze leads with AI, score them, and create personalized outreach",
        "category": "sales_automation",
        "steps": [
            {
                "id": "step_1",
                "type": "data_source",
                "name": "Import Leads",
                "config": {
                    "source_type": "google_sheets",
                    "required_fields": ["email", "name", "company", "context"],
                },
                "position": {"x": 100, "y": 100},
            },
            {
                "id": "step_2",
                "type": "ai_analysis",
                "name": "Analyze & Score Leads",
                "config": {
                    "analysis_prompt": "Analyze these leads and segment them by potential value and engagement likelihood",
                },
                "position": {"x": 300, "y": 100},
            },
            {
                "id": "step_3",
                "type": "condition",
                "name": "High-Value Leads Filter",
                "config": {"condition_logic": "{{high_priority_count}} > 0"},
                "position": {"x": 500, "y": 100},
            },
            {
                "id": "step_4",
                "type": "ai_content",
                "name": "Personalized Outreach",
                "config": {
                    "template": "Create highly personalized email for {{contact_name}} based on {{segment}} analysis",
                    "brand_voice": "consultative",
                    "per_record": True,
                },
                "position": {"x": 700, "y": 100},
            },
        ],
    },
    {
        "name": "Multi-Step Drip Campaign",
        "description": "Automated email sequence with AI-generated follow-ups",
        "category": "email_marketing",
        "steps": [
            {
                "id": "step_1",
                "type": "data_source",
                "name": "New Subscribers",
                "config": {"source_type": "api_endpoint", "required_fields": ["email", "name", "signup_date"]},
                "position": {"x": 100, "y": 100},
            },
            {
                "id": "step_2",
                "type": "ai_content",
                "name": "Welcome Email",
                "config": {
                    "template": "Welcome {{contact_name}} with personalized onboarding content",
                    "brand_voice": "friendly",
                    "per_record": True,
                },
                "position": {"x": 300, "y": 100},
            },
            {
                "id": "step_3",
                "type": "email_send",
                "name": "Send Welcome",
                "config": {"email_service": "resend", "from_email": "welcome@company.com"},
                "position": {"x": 500, "y": 100},
            },
            {
                "id": "step_4",
                "type": "wait_delay",
                "name": "Wait 3 Days",
                "config": {"duration": THREE_DAYS_MS},
                "position": {"x": 700, "y": 100},
            },
            {
                "id": "step_5",
                "type": "ai_content",
                "name": "Follow-up Content",
                "config": {
                    "template": "Follow-up with {{contact_name}} about their experience and next steps",
                    "brand_voice": "helpful",
                    "per_record": True,
                },
                "position": {"x": 900, "y": 100},
            },
        ],
    },
]


async def seed_templates(session_factory=async_session):
    async with session_factory() as db:
        result = await db.execute(select(Workflow.name).where(Workflow.is_template.is_(True)))
        existing = set(result.scalars().all())

        for t in TEMPLATES:
            if t["name"] in existing:
                continue
            db.add(
                Workflow(
                    owner=SYSTEM_OWNER,
                    name=t["name"],
                    description=t["description"],
                    category=t["category"],
                    status="active",
                    is_template=True,
                    steps=t["steps"],
                )
            )
        await db.commit()
