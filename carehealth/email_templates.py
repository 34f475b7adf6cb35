"""
MJML Email Templates
Notification emails rendered with MJML for responsive, cross-client compatibility
"""

from html import escape
from typing import Optional

# CareHealth theme colors - Blue/Slate color scheme
THEME = {
    "primary": "#2563eb",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 40px 0 40px">
          <mj-column>
            <mj-text font-size="20px" font-weight="700" color="{THEME['primary']}" padding="0 0 24px 0">
              CareHealth
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 32px 0" />
          </mj-column>
        </mj-section>

        <!-- Main Content -->
        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <!-- Footer -->
        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              This is an automated message from CareHealth. Please do not reply.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def notification_template(subject: str, body: str) -> str:
    """Wrap a plain-text notification body; blank lines separate paragraphs"""
    paragraphs = [p.strip() for p in body.split("\n\n") if p.strip()]
    content = "\n".join(
        f"""
    <mj-text>
      {escape(paragraph).replace(chr(10), "<br />")}
    </mj-text>
    """
        for paragraph in paragraphs
    )
    preview = escape(paragraphs[0][:120]) if paragraphs else escape(subject)
    return get_base_template(
        title=escape(subject),
        preview_text=preview,
        content_sections=content,
    )
