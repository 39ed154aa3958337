"""Render a run report as text and HTML."""

from dataclasses import dataclass

from jinja2 import Template

from .report import RunReport

TEXT_TEMPLATE = Template(
    """\
Backup {{ "FAILED" if report.errors else "OK" }}
{% for name, server in report.servers.items() %}

== {{ name }}{{ " (errors)" if server.has_error else "" }}
{% if server.error %}
  ERROR: {{ server.error }}
{% endif %}
{% for result in server.commands %}
  [{{ "OK" if result.status else "FAIL" }}] {{ result.command.exec }}
{% for path in result.deleted_files %}
      deleted {{ path }}
{% endfor %}
{% if result.error %}
      {{ result.error }}
{% endif %}
{% for message in result.retention_errors %}
      retention: {{ message }}
{% endfor %}
{% endfor %}
{% for result in server.folders %}
  [{{ "OK" if result.status else "FAIL" }}] {{ result.sync.source }} -> {{ result.sync.destination }}
{% if result.error %}
      {{ result.error }}
{% endif %}
{% endfor %}
{% endfor %}
""",
    trim_blocks=True,
    lstrip_blocks=True,
)

HTML_TEMPLATE = Template(
    """\
<html>
<body style="font-family: Arial, sans-serif;">
  <h2 style="color: {{ '#dc3545' if report.errors else '#28a745' }};">
    Backup {{ "failed" if report.errors else "succeeded" }}
  </h2>
  {% for name, server in report.servers.items() %}
  <h3>{{ name }}</h3>
  {% if server.error %}<p style="color: #dc3545;">{{ server.error }}</p>{% endif %}
  <table cellpadding="4">
    {% for result in server.commands %}
    <tr>
      <td>{% if result.status %}&#10004;{% else %}&#10008;{% endif %}</td>
      <td><code>{{ result.command.exec }}</code></td>
      <td>
        {% if result.error %}{{ result.error }}{% endif %}
        {% for path in result.deleted_files %}<div>deleted {{ path }}</div>{% endfor %}
        {% for message in result.retention_errors %}<div>{{ message }}</div>{% endfor %}
      </td>
    </tr>
    {% endfor %}
    {% for result in server.folders %}
    <tr>
      <td>{% if result.status %}&#10004;{% else %}&#10008;{% endif %}</td>
      <td><code>{{ result.sync.source }} &rarr; {{ result.sync.destination }}</code></td>
      <td>{% if result.error %}{{ result.error }}{% endif %}</td>
    </tr>
    {% endfor %}
  </table>
  {% endfor %}
</body>
</html>
""",
    autoescape=True,
)


@dataclass
class FormattedReport:
    """A report rendered for humans."""

    text: str
    html: str


class ReportFormatter:
    """Render RunReports with the text and HTML templates."""

    def format_text(self, report: RunReport) -> str:
        return TEXT_TEMPLATE.render(report=report)

    def format_html(self, report: RunReport) -> str:
        return HTML_TEMPLATE.render(report=report)

    def format(self, report: RunReport) -> FormattedReport:
        return FormattedReport(text=self.format_text(report), html=self.format_html(report))
