"""
MJML Email Templates
Templates for automation emails sent to clinic contacts
"""

import html

THEME = {
    "primary": "#0ea5e9",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
}


def automation_message_template(title: str, message: str, clinic_name: str = "") -> str:
    """Wrap a rendered automation message in the standard MJML layout"""
    # Preserve line breaks of WhatsApp-style messages
    body = "<br />".join(html.escape(line) for line in message.splitlines())
    footer = html.escape(clinic_name) if clinic_name else ""

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{html.escape(title)}</mj-title>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 40px">
          <mj-column>
            <mj-text font-size="20px" font-weight="600" color="{THEME['text_primary']}">
              {html.escape(title)}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" />
            <mj-text>{body}</mj-text>
          </mj-column>
        </mj-section>
        <mj-section padding="16px 0">
          <mj-column>
            <mj-text align="center" font-size="12px" color="{THEME['text_muted']}">{footer}</mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """
