# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Tests for command payload templates."""

import pytest

from sagaflow.saga.core.errors import CommandTemplateError
from sagaflow.saga.core.templates import render_template


class TestRenderTemplate:
    def test_whole_placeholder_keeps_raw_value(self):
        context = {"amount": 42, "items": [1, 2]}
        assert render_template({"amount": "${amount}", "items": "${items}"}, context) == {
            "amount": 42,
            "items": [1, 2],
        }

    def test_embedded_placeholders_are_substituted_as_text(self):
        assert render_template("order-${orderId}/${n}", {"orderId": "O1", "n": 3}) == "order-O1/3"

    def test_dotted_path_walks_nested_dicts(self):
        context = {"customer": {"address": {"city": "Porto"}}}
        assert render_template("${customer.address.city}", context) == "Porto"

    def test_default_used_when_key_missing(self):
        assert render_template("${currency:EUR}", {}) == "EUR"

    def test_default_ignored_when_key_present(self):
        assert render_template("${currency:EUR}", {"currency": "USD"}) == "USD"

    def test_nested_structures_are_rendered(self):
        template = {"lines": [{"sku": "${sku}"}, "${qty}"], "fixed": True}
        assert render_template(template, {"sku": "A-1", "qty": 2}) == {
            "lines": [{"sku": "A-1"}, 2],
            "fixed": True,
        }

    def test_template_is_not_mutated(self):
        template = {"orderId": "${orderId}"}
        render_template(template, {"orderId": "O1"})
        assert template == {"orderId": "${orderId}"}

    def test_missing_key_raises(self):
        with pytest.raises(CommandTemplateError) as exc_info:
            render_template({"paymentId": "${paymentId}"}, {"orderId": "O1"})
        assert exc_info.value.code == "SAGA_TEMPLATE_UNRESOLVED"
        assert exc_info.value.context["placeholder"] == "paymentId"
        assert exc_info.value.context["available"] == ["orderId"]

    def test_missing_nested_key_raises(self):
        with pytest.raises(CommandTemplateError):
            render_template("${customer.email}", {"customer": {"name": "Ana"}})
