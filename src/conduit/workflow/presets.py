"""Built-in content operations pipelines."""

from __future__ import annotations

from conduit.workflow.definition import (
    ConditionNodeConfig,
    DelayNodeConfig,
    Edge,
    NodeDefinition,
    NodeType,
    ParallelNodeConfig,
    PipelineDefinition,
    RetryPolicy,
    ToolNodeConfig,
    TransformNodeConfig,
)


def content_creation_pipeline() -> PipelineDefinition:
    """Trending research -> content -> cover image -> quality gate -> publish."""
    return PipelineDefinition(
        id="content-creation",
        name="Content Creation",
        description="Research trends, generate content and a cover, check quality, publish",
        entry_node_id="research",
        nodes=[
            NodeDefinition(
                id="research",
                type=NodeType.TOOL,
                name="Trend research",
                config=ToolNodeConfig(
                    tool_name="scrape-trending",
                    param_mapping={"topic": "topic"},
                    output_key="research_result",
                ),
                retry=RetryPolicy(max_attempts=2, delay_ms=3000),
            ),
            NodeDefinition(
                id="generate-content",
                type=NodeType.TOOL,
                name="Generate content",
                config=ToolNodeConfig(
                    tool_name="ai-generate-content",
                    param_mapping={"topic": "topic"},
                    output_key="content",
                ),
                retry=RetryPolicy(max_attempts=2, delay_ms=2000),
            ),
            NodeDefinition(
                id="generate-image",
                type=NodeType.TOOL,
                name="Cover image",
                config=ToolNodeConfig(
                    tool_name="ai-generate-image",
                    param_mapping={"prompt": "topic"},
                    output_key="cover_image",
                ),
            ),
            NodeDefinition(
                id="review-gate",
                type=NodeType.CONDITION,
                name="Quality check",
                description="Publish only content long enough to meet the bar",
                config=ConditionNodeConfig(
                    expression="ctx.content and ctx.content | length > 100",
                    true_branch="publish",
                    false_branch="regenerate",
                ),
            ),
            NodeDefinition(
                id="regenerate",
                type=NodeType.TOOL,
                name="Rewrite content",
                config=ToolNodeConfig(
                    tool_name="ai-generate-content",
                    params={"type": "rewrite"},
                    param_mapping={"topic": "topic", "previousContent": "content"},
                    output_key="content",
                ),
            ),
            NodeDefinition(
                id="publish",
                type=NodeType.TOOL,
                name="Publish",
                config=ToolNodeConfig(
                    tool_name="multi-publish",
                    params={"platforms": ["xiaohongshu", "wechat"]},
                    param_mapping={"content": "content", "coverImage": "cover_image"},
                    output_key="publish_result",
                ),
            ),
        ],
        edges=[
            Edge(source="research", target="generate-content"),
            Edge(source="generate-content", target="generate-image"),
            Edge(source="generate-image", target="review-gate"),
            Edge(source="regenerate", target="publish"),
        ],
    )


def multi_publish_pipeline() -> PipelineDefinition:
    """Prepare existing content, then publish to several platforms at once."""
    return PipelineDefinition(
        id="multi-publish",
        name="Multi-platform Publish",
        description="Format existing content and publish it to several platforms in parallel",
        entry_node_id="prepare",
        nodes=[
            NodeDefinition(
                id="prepare",
                type=NodeType.TRANSFORM,
                name="Prepare content",
                config=TransformNodeConfig(
                    expression="{'content': ctx.content, 'title': ctx.title or 'Untitled'}",
                    output_key="prepared",
                ),
            ),
            NodeDefinition(
                id="parallel-publish",
                type=NodeType.PARALLEL,
                name="Publish in parallel",
                config=ParallelNodeConfig(node_ids=["publish-xhs", "publish-wechat"], wait_for="all"),
            ),
            NodeDefinition(
                id="publish-xhs",
                type=NodeType.TOOL,
                name="Publish to Xiaohongshu",
                config=ToolNodeConfig(
                    tool_name="xhs-publish",
                    param_mapping={"content": "prepared.content", "title": "prepared.title"},
                    output_key="xhs_result",
                ),
                retry=RetryPolicy(max_attempts=2, delay_ms=5000),
            ),
            NodeDefinition(
                id="publish-wechat",
                type=NodeType.TOOL,
                name="Publish to WeChat",
                config=ToolNodeConfig(
                    tool_name="wechat-publish",
                    param_mapping={"content": "prepared.content", "title": "prepared.title"},
                    output_key="wechat_result",
                ),
                retry=RetryPolicy(max_attempts=2, delay_ms=5000),
            ),
        ],
        edges=[Edge(source="prepare", target="parallel-publish")],
    )


def daily_report_pipeline() -> PipelineDefinition:
    """Collect -> analyze -> report -> wait -> push."""
    return PipelineDefinition(
        id="daily-report",
        name="Daily Report",
        description="Collect trending topics, analyze them, write a report and push it",
        entry_node_id="collect",
        nodes=[
            NodeDefinition(
                id="collect",
                type=NodeType.TOOL,
                name="Collect trends",
                config=ToolNodeConfig(
                    tool_name="scrape-trending",
                    params={"topic": "daily trends"},
                    output_key="raw_data",
                ),
                retry=RetryPolicy(max_attempts=3, delay_ms=5000),
            ),
            NodeDefinition(
                id="analyze",
                type=NodeType.TOOL,
                name="Analyze trends",
                config=ToolNodeConfig(
                    tool_name="ai-generate-content",
                    params={"topic": "Summarize today's top 10 trending topics", "type": "analysis"},
                    param_mapping={"context": "raw_data"},
                    output_key="analysis",
                ),
            ),
            NodeDefinition(
                id="generate-report",
                type=NodeType.TOOL,
                name="Write report",
                config=ToolNodeConfig(
                    tool_name="ai-generate-content",
                    params={"topic": "Write today's operations report", "type": "report"},
                    param_mapping={"analysis": "analysis"},
                    output_key="report",
                ),
            ),
            NodeDefinition(
                id="delay-push",
                type=NodeType.DELAY,
                name="Wait for push window",
                config=DelayNodeConfig(delay_ms=1000),
            ),
            NodeDefinition(
                id="push",
                type=NodeType.TOOL,
                name="Push report",
                config=ToolNodeConfig(
                    tool_name="multi-publish",
                    params={"platforms": ["wechat"]},
                    param_mapping={"content": "report"},
                    output_key="push_result",
                ),
            ),
        ],
        edges=[
            Edge(source="collect", target="analyze"),
            Edge(source="analyze", target="generate-report"),
            Edge(source="generate-report", target="delay-push"),
            Edge(source="delay-push", target="push"),
        ],
    )


def all_presets() -> list[PipelineDefinition]:
    """Fresh instances of every preset pipeline."""
    return [
        content_creation_pipeline(),
        multi_publish_pipeline(),
        daily_report_pipeline(),
    ]
