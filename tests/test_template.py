import pytest

from cloudproxy.exceptions import TemplateError
from cloudproxy.instance import Instance
from cloudproxy.template import TemplateVars, check, names, render

pytestmark = [pytest.mark.unit]

VARS = TemplateVars(index="03", address="203.0.113.7", name="cloud-proxy-AbCd", ports="1-25")


class TestRender:
    def test_substitutes_every_variable(self):
        result = render("{{name}} {{index}} {{address}} {{ports}}", VARS)
        assert result == "cloud-proxy-AbCd 03 203.0.113.7 1-25"

    def test_spaces_and_leading_dot(self):
        assert render("nmap -p {{ .ports }} {{.address}}", VARS) == "nmap -p 1-25 203.0.113.7"

    def test_ip_alias(self):
        assert render("ping {{ip}}", VARS) == "ping 203.0.113.7"

    def test_deterministic(self):
        template = "nmap -oX out-{{index}}.xml {{address}}"
        assert render(template, VARS) == render(template, VARS)

    def test_shell_syntax_untouched(self):
        assert render("echo $HOME ${USER} {x}", VARS) == "echo $HOME ${USER} {x}"

    def test_no_placeholders(self):
        assert render("uname -a", VARS) == "uname -a"

    def test_unknown_variable(self):
        with pytest.raises(TemplateError, match="hostname"):
            render("echo {{hostname}}", VARS)

    def test_empty_placeholder(self):
        with pytest.raises(TemplateError):
            render("echo {{ }}", VARS)

    def test_unterminated_placeholder(self):
        with pytest.raises(TemplateError, match="Unterminated"):
            render("echo {{address", VARS)

    def test_invalid_placeholder(self):
        with pytest.raises(TemplateError):
            render("echo {{address | upper}}", VARS)


class TestForInstance:
    def test_uses_padded_label(self):
        instance = Instance(id=9, name="scan-x", index=3, label="03", ports="80")
        instance.address = "198.51.100.1"
        variables = TemplateVars.for_instance(instance)
        assert variables == TemplateVars(
            index="03", address="198.51.100.1", name="scan-x", ports="80"
        )


class TestCheck:
    def test_valid(self):
        check("nmap -p {{ports}} {{ip}}")

    def test_invalid(self):
        with pytest.raises(TemplateError):
            check("nmap {{target}}")


class TestNames:
    def test_aliases_resolved(self):
        assert names("nmap -p {{ports}} {{ ip }} -oX {{.index}}.xml") == {
            "ports",
            "address",
            "index",
        }

    def test_no_placeholders(self):
        assert names("uptime") == set()

    def test_unknown_variable(self):
        with pytest.raises(TemplateError):
            names("{{target}}")
