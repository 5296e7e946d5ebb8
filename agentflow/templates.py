"""Pre-built workflow graphs users can start from.

Templates are ordinary node/edge graphs; once instantiated they are stored
and executed like any user-authored workflow.
"""

from typing import Dict, List, Optional

from .models.core import WorkflowCreate, WorkflowTemplate

_PARSE_ANALYSIS_CODE = """import json
raw = previousResults["openai-1"]["response"]
try:
    analysis = json.loads(raw)
except ValueError:
    analysis = {}
return {
    "sentiment": float(analysis.get("sentiment", 0)),
    "response": analysis.get("response", raw),
}"""

_FORMAT_CONTENT_CODE = """from datetime import datetime, timezone
content = previousResults["openai-1"]["response"]
lines = content.split("\\n")
return {
    "title": lines[0],
    "body": "\\n".join(lines[1:]),
    "wordCount": len(content.split()),
    "generatedAt": datetime.now(timezone.utc).isoformat(),
}"""

_FETCH_DATA_CODE = """import random
from datetime import datetime, timezone
data = {
    "sales": random.randint(5000, 15000),
    "users": random.randint(500, 1500),
    "revenue": random.randint(20000, 70000),
}
return {"data": data, "timestamp": datetime.now(timezone.utc).isoformat()}"""


def _node(node_id: str, node_type: str, x: float, y: float, **data) -> dict:
    return {
        "id": node_id,
        "type": "customNode",
        "position": {"x": x, "y": y},
        "data": {"nodeType": node_type, **data},
    }


def _edge(edge_id: str, source: str, target: str, handle: Optional[str] = None) -> dict:
    edge = {"id": edge_id, "source": source, "target": target}
    if handle:
        edge["sourceHandle"] = handle
    return edge


_TEMPLATE_DATA: List[dict] = [
    {
        "id": "customer-support",
        "name": "Customer Support Agent",
        "description": "AI agent that handles customer inquiries with sentiment analysis and escalation",
        "category": "customer-service",
        "nodes": [
            _node("trigger-1", "webhook", 100, 100, label="Customer Message",
                  description="Incoming customer support request", category="inputs"),
            _node("openai-1", "openai", 400, 100, label="Analyze Message", category="ai",
                  model="gpt-4o", temperature=0.7,
                  systemPrompt=(
                      "You are a customer support AI. Analyze the customer message sentiment and provide "
                      "an appropriate response. Return a JSON object with sentiment score (0-1) and response."
                  ),
                  userMessage="Customer message: {{message}}"),
            _node("code-1", "code", 700, 100, label="Parse Analysis", category="processing",
                  language="python", code=_PARSE_ANALYSIS_CODE),
            _node("condition-1", "condition", 1000, 100, label="Check Sentiment", category="processing",
                  condition="sentiment > 0.7"),
            _node("email-1", "email", 1300, 50, label="Positive Feedback Alert", category="outputs",
                  to="support@company.com", subject="Positive Customer Feedback Received",
                  body="We received positive feedback: {{response}}"),
            _node("escalate-1", "webhook-response", 1300, 150, label="Escalate Issue", category="outputs",
                  statusCode=200,
                  responseData='{"action": "escalate", "priority": "high", "response": "{{response}}"}'),
        ],
        "edges": [
            _edge("e1-2", "trigger-1", "openai-1"),
            _edge("e2-3", "openai-1", "code-1"),
            _edge("e3-4", "code-1", "condition-1"),
            _edge("e4-5", "condition-1", "email-1", "true"),
            _edge("e4-6", "condition-1", "escalate-1", "false"),
        ],
    },
    {
        "id": "content-generator",
        "name": "Content Generator",
        "description": "Generate blog posts, social media content, and marketing materials",
        "category": "content",
        "nodes": [
            _node("manual-1", "manual", 100, 100, label="Manual Trigger", category="inputs"),
            _node("openai-1", "openai", 400, 100, label="Generate Content", category="ai",
                  model="gpt-4o", temperature=0.8, maxTokens=500,
                  systemPrompt=(
                      "You are a content creation AI. Generate engaging, SEO-friendly content based on "
                      "the provided topic and target audience."
                  ),
                  userMessage="Topic: {{topic}}\nTarget Audience: {{audience}}\nContent Type: {{contentType}}"),
            _node("code-1", "code", 700, 100, label="Format Output", category="processing",
                  language="python", code=_FORMAT_CONTENT_CODE),
        ],
        "edges": [
            _edge("e1-2", "manual-1", "openai-1"),
            _edge("e2-3", "openai-1", "code-1"),
        ],
    },
    {
        "id": "data-analysis",
        "name": "Data Analysis Pipeline",
        "description": "Automated data processing and insight generation",
        "category": "analytics",
        "nodes": [
            _node("schedule-1", "schedule", 100, 100, label="Daily Analysis", category="inputs",
                  cron="0 9 * * *", timezone="UTC"),
            _node("code-1", "code", 400, 100, label="Fetch Data", category="processing",
                  language="python", code=_FETCH_DATA_CODE),
            _node("openai-1", "openai", 700, 100, label="Generate Insights", category="ai",
                  model="gpt-4o", temperature=0.3,
                  systemPrompt=(
                      "You are a data analyst AI. Analyze the provided data and generate actionable "
                      "insights and recommendations."
                  ),
                  userMessage="Data to analyze: {{data}}"),
            _node("email-1", "email", 1000, 100, label="Daily Report", category="outputs",
                  to="analytics@company.com", subject="Daily Analytics Report {{timestamp}}",
                  body="Here are today's insights:\n\n{{response}}"),
        ],
        "edges": [
            _edge("e1-2", "schedule-1", "code-1"),
            _edge("e2-3", "code-1", "openai-1"),
            _edge("e3-4", "openai-1", "email-1"),
        ],
    },
    {
        "id": "chat-responder",
        "name": "Chat Responder",
        "description": "Answer an incoming message with a chat model and return the reply to the caller",
        "category": "customer-service",
        "nodes": [
            _node("manual-1", "manual", 100, 100, label="Incoming Message", category="inputs"),
            {
                "id": "chat-1",
                "type": "openai-chat",
                "position": {"x": 400, "y": 100},
                "data": {
                    "label": "Reply",
                    "config": {
                        "model": "gpt-4o",
                        "messages": [
                            {"role": "system", "content": "You are a friendly assistant."},
                            {"role": "user", "content": "{{message}}"},
                        ],
                    },
                },
            },
            _node("response-1", "webhook-response", 700, 100, label="Send Reply", category="outputs",
                  statusCode=200, responseData="{{response}}"),
        ],
        "edges": [
            _edge("e1-2", "manual-1", "chat-1"),
            _edge("e2-3", "chat-1", "response-1"),
        ],
    },
]

WORKFLOW_TEMPLATES: Dict[str, WorkflowTemplate] = {
    data["id"]: WorkflowTemplate.model_validate(data) for data in _TEMPLATE_DATA
}


def list_templates() -> List[WorkflowTemplate]:
    return [template.model_copy(deep=True) for template in WORKFLOW_TEMPLATES.values()]


def get_template(template_id: str) -> Optional[WorkflowTemplate]:
    template = WORKFLOW_TEMPLATES.get(template_id)
    return template.model_copy(deep=True) if template else None


def template_to_workflow(template: WorkflowTemplate, name: Optional[str] = None,
                         user_id: Optional[str] = None) -> WorkflowCreate:
    """Workflow create payload holding a copy of the template's graph."""
    return WorkflowCreate(
        name=name or template.name,
        description=template.description,
        nodes=[node.model_copy(deep=True) for node in template.nodes],
        edges=[edge.model_copy(deep=True) for edge in template.edges],
        settings={"template": template.id},
        user_id=user_id,
    )
