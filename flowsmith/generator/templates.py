# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Workflow Templates — Deterministic fallback when the model is unavailable.

A template is picked by keyword over the lower-cased prompt:
  - email / contact / form  → contact form notification
  - content / blog / post   → content generation & publishing
  - anything else           → generic webhook → transform → email
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Tuple

from flowsmith.protocols.workflow import WorkflowDefinition, validate_workflow


class GenerationError(Exception):
    """A workflow (generated or built-in) failed to parse or validate."""


CONTACT_FORM_KEYWORDS: Tuple[str, ...] = ("email", "contact", "form")
CONTENT_KEYWORDS: Tuple[str, ...] = ("content", "blog", "post")


CONTACT_FORM_TEMPLATE: Dict[str, Any] = {
    "name": "Contact Form Email Workflow",
    "env": {
        "ADMIN_EMAIL": "admin@company.com",
        "SLACK_WEBHOOK": "{{slack_webhook}}",
    },
    "nodes": [
        {
            "id": "trigger",
            "type": "webhook",
            "action": "receive",
            "inputs": {"method": "POST", "path": "/contact"},
            "outputs": ["data"],
        },
        {
            "id": "validate",
            "type": "transform",
            "action": "validate",
            "inputs": {
                "data": "{{trigger.data}}",
                "required": ["name", "email", "message"],
            },
            "outputs": ["validated"],
        },
        {
            "id": "send_email",
            "type": "email",
            "action": "send",
            "inputs": {
                "to": "{{env.ADMIN_EMAIL}}",
                "subject": "New Contact Form Submission",
                "body": (
                    "Name: {{validate.validated.name}}\n"
                    "Email: {{validate.validated.email}}\n"
                    "Message: {{validate.validated.message}}"
                ),
            },
            "outputs": ["sent"],
            "authRef": "smtp_gmail",
        },
        {
            "id": "slack_notify",
            "type": "slack",
            "action": "send",
            "inputs": {
                "webhook": "{{env.SLACK_WEBHOOK}}",
                "text": "New contact form submission from {{validate.validated.name}}",
            },
            "outputs": ["notified"],
            "authRef": "slack_webhook",
        },
    ],
    "edges": [
        {"fromNodeId": "trigger", "fromPort": "data", "toNodeId": "validate", "toPort": "data"},
        {"fromNodeId": "validate", "fromPort": "validated", "toNodeId": "send_email", "toPort": "data"},
        {"fromNodeId": "validate", "fromPort": "validated", "toNodeId": "slack_notify", "toPort": "data"},
    ],
    "triggers": [
        {"type": "webhook", "config": {"path": "/contact", "method": "POST"}},
    ],
}


CONTENT_PUBLISHING_TEMPLATE: Dict[str, Any] = {
    "name": "Content Generation & Publishing",
    "env": {
        "CMS_API_KEY": "{{cms_api_key}}",
        "SOCIAL_TOKEN": "{{social_token}}",
    },
    "nodes": [
        {
            "id": "schedule_trigger",
            "type": "webhook",
            "action": "receive",
            "inputs": {"schedule": "daily"},
            "outputs": ["time"],
        },
        {
            "id": "generate_content",
            "type": "ai",
            "action": "generate",
            "inputs": {
                "prompt": "Generate a blog post about {{schedule_trigger.time.topic}}",
                "model": "qwen3-max",
            },
            "outputs": ["content"],
            "authRef": "dashscope_api",
        },
        {
            "id": "publish_cms",
            "type": "http",
            "action": "post",
            "inputs": {
                "url": "https://api.cms.com/posts",
                "headers": {"Authorization": "Bearer {{env.CMS_API_KEY}}"},
                "body": {
                    "title": "{{generate_content.content.title}}",
                    "content": "{{generate_content.content.body}}",
                },
            },
            "outputs": ["published"],
            "authRef": "cms_api",
        },
        {
            "id": "social_share",
            "type": "http",
            "action": "post",
            "inputs": {
                "url": "https://api.social.com/posts",
                "headers": {"Authorization": "Bearer {{env.SOCIAL_TOKEN}}"},
                "body": {"text": "New blog post: {{generate_content.content.title}}"},
            },
            "outputs": ["shared"],
            "authRef": "social_api",
        },
    ],
    "edges": [
        {"fromNodeId": "schedule_trigger", "fromPort": "time", "toNodeId": "generate_content", "toPort": "trigger"},
        {"fromNodeId": "generate_content", "fromPort": "content", "toNodeId": "publish_cms", "toPort": "data"},
        {"fromNodeId": "publish_cms", "fromPort": "published", "toNodeId": "social_share", "toPort": "trigger"},
    ],
    "triggers": [
        {"type": "schedule", "config": {"cron": "0 9 * * *", "timezone": "UTC"}},
    ],
}


GENERIC_TEMPLATE: Dict[str, Any] = {
    "name": "Generic Data Workflow",
    "env": {},
    "nodes": [
        {
            "id": "trigger",
            "type": "webhook",
            "action": "receive",
            "inputs": {"method": "POST"},
            "outputs": ["data"],
        },
        {
            "id": "process",
            "type": "transform",
            "action": "process",
            "inputs": {"data": "{{trigger.data}}"},
            "outputs": ["processed"],
        },
        {
            "id": "notify",
            "type": "email",
            "action": "send",
            "inputs": {
                "to": "admin@example.com",
                "subject": "Workflow Completed",
                "body": "Data processed: {{process.processed}}",
            },
            "outputs": ["sent"],
            "authRef": "smtp_default",
        },
    ],
    "edges": [
        {"fromNodeId": "trigger", "fromPort": "data", "toNodeId": "process", "toPort": "data"},
        {"fromNodeId": "process", "fromPort": "processed", "toNodeId": "notify", "toPort": "data"},
    ],
    "triggers": [
        {"type": "webhook", "config": {"path": "/webhook", "method": "POST"}},
    ],
}


def select_template(prompt: str) -> Dict[str, Any]:
    """Pick the template for a prompt (keyword match, first group wins)."""
    text = (prompt or "").lower()
    if any(word in text for word in CONTACT_FORM_KEYWORDS):
        return CONTACT_FORM_TEMPLATE
    if any(word in text for word in CONTENT_KEYWORDS):
        return CONTENT_PUBLISHING_TEMPLATE
    return GENERIC_TEMPLATE


def render_template(prompt: str) -> WorkflowDefinition:
    """
    Build the fallback workflow for a prompt.

    Raises GenerationError if the template does not pass validation; that
    is a bug in this module, never a user error.
    """
    candidate = copy.deepcopy(select_template(prompt))
    candidate["description"] = f"Automated workflow: {prompt}"[:1000]

    result = validate_workflow(candidate)
    if not result.success:
        raise GenerationError(f"Template '{candidate['name']}' is invalid: {result.error}")
    return result.workflow
