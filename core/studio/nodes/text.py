"""Text entry and prompt building nodes."""

from studio.errors import NodeExecutionError
from studio.graph.config_schema import ConfigField, ConfigFieldType, ConfigSchema
from studio.graph.node import ExecutionContext, NodeDefinition, NodeResult
from studio.graph.types import CapabilityClass, PortDefinition, PortType
from studio.nodes.shared import get_text, render_template, resolve_template_variables


async def _execute_input(context: ExecutionContext) -> NodeResult:
    return NodeResult(outputs={"text": get_text(context.config.get("value"))})


INPUT_NODE = NodeDefinition(
    kind="studio.input",
    version="1.0.0",
    capability_class=CapabilityClass.LOCAL_CPU,
    execute=_execute_input,
    output_ports=(PortDefinition("text", PortType.TEXT),),
    config_defaults={"value": ""},
    config_schema=ConfigSchema(
        fields=(ConfigField("value", "Text", ConfigFieldType.TEXTAREA),),
    ),
    label="Text Input",
    description="Emits a fixed piece of text.",
)


async def _execute_prompt_template(context: ExecutionContext) -> NodeResult:
    """
    Build a structured prompt payload.

    The rendered template becomes the system prompt and the ``text`` input
    the user message. Downstream generation nodes accept either this payload
    or plain text.
    """
    variables = resolve_template_variables(context)
    system_prompt = render_template(get_text(context.config.get("template")), variables).strip()
    user_message = get_text(context.inputs.get("text")).strip()
    if not system_prompt or not user_message:
        raise NodeExecutionError(
            context.node.id,
            "requires both a system prompt template result and a text input.",
        )

    return NodeResult(
        outputs={
            "prompt": {
                "systemPrompt": system_prompt,
                "userMessage": user_message,
                "prompt": user_message,
                "text": user_message,
            }
        }
    )


PROMPT_TEMPLATE_NODE = NodeDefinition(
    kind="studio.prompt_template",
    version="1.0.0",
    capability_class=CapabilityClass.LOCAL_CPU,
    execute=_execute_prompt_template,
    input_ports=(PortDefinition("text", PortType.TEXT, required=True),),
    output_ports=(PortDefinition("prompt", PortType.TEXT),),
    config_defaults={"template": ""},
    config_schema=ConfigSchema(
        fields=(
            ConfigField(
                "template",
                "System Prompt",
                ConfigFieldType.TEXTAREA,
                required=True,
                description="Supports {{text}} and other input port variables.",
            ),
        ),
    ),
    label="Prompt Template",
)
