"""Tests for node config validation."""

from studio.graph.config_schema import (
    get_unknown_node_config_keys,
    merge_node_config_with_defaults,
    validate_node_config,
)


class TestBuiltinConfigs:
    def test_cli_required_fields_flagged(self, registry):
        definition = registry.require("studio.cli_command", "1.0.0")

        result = validate_node_config(
            definition, {"command": "", "cwd": "", "timeoutMs": 30_000, "maxOutputBytes": 4096}
        )

        assert not result.is_valid
        assert "Command is required." in result.errors
        assert "Working Directory is required." in result.errors

    def test_cli_valid_config_passes(self, registry):
        definition = registry.require("studio.cli_command", "1.0.0")

        result = validate_node_config(
            definition,
            {
                "command": "echo",
                "args": ["hello", "world"],
                "cwd": "/",
                "timeoutMs": 1_000,
                "maxOutputBytes": 8_192,
            },
        )

        assert result.is_valid, result.error

    def test_select_rejects_unknown_option(self, registry):
        definition = registry.require("studio.http_request", "1.0.0")
        config = merge_node_config_with_defaults(
            definition, {"method": "INVALID", "url": "https://example.com"}
        )

        result = validate_node_config(definition, config)

        assert not result.is_valid
        assert any(error.startswith("Method must be one of") for error in result.errors)

    def test_number_bounds_and_integers(self, registry):
        definition = registry.require("studio.image_generation", "1.0.0")

        too_many = validate_node_config(definition, {"count": 9, "aspectRatio": "1:1"})
        fractional = validate_node_config(definition, {"count": 1.5, "aspectRatio": "1:1"})
        boolean = validate_node_config(definition, {"count": True, "aspectRatio": "1:1"})

        assert too_many.errors == ["Images must be <= 4."]
        assert fractional.errors == ["Images must be an integer."]
        assert boolean.errors == ["Images must be a number."]

    def test_unknown_keys_rejected_unless_allowed(self, registry):
        text = registry.require("studio.text_generation", "1.0.0")
        dataset = registry.require("studio.dataset", "1.0.0")

        assert get_unknown_node_config_keys(text, {"mystery": 1}) == ["mystery"]
        text_result = validate_node_config(
            text, merge_node_config_with_defaults(text, {"mystery": 1})
        )
        assert 'Unknown config key "mystery".' in text_result.errors

        dataset_config = merge_node_config_with_defaults(
            dataset, {"workingDirectory": "/srv", "customQuery": "select 1", "mystery": 1}
        )
        assert validate_node_config(dataset, dataset_config).is_valid

    def test_hidden_fields_are_not_validated(self, registry):
        definition = registry.require("studio.http_request", "1.0.0")
        config = merge_node_config_with_defaults(
            definition, {"url": "https://example.com", "authSource": "none", "authToken": 42}
        )

        assert validate_node_config(definition, config).is_valid
