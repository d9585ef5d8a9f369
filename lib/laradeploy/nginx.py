from __future__ import annotations

from .plan import DeploymentPlan


def render_vhost(*, domain: str, document_root: str, fpm_socket: str) -> str:
    return "\n".join(
        [
            "server {",
            "    listen 80;",
            "    listen [::]:80;",
            f"    server_name {domain};",
            f"    root {document_root};",
            "",
            "    index index.php index.html index.htm;",
            "",
            "    charset utf-8;",
            "",
            "    location / {",
            "        try_files $uri $uri/ /index.php?$query_string;",
            "    }",
            "",
            "    location = /favicon.ico { access_log off; log_not_found off; }",
            "    location = /robots.txt  { access_log off; log_not_found off; }",
            "",
            "    error_page 404 /index.php;",
            "",
            "    location ~ \\.php$ {",
            f"        fastcgi_pass unix:{fpm_socket};",
            "        fastcgi_index index.php;",
            "        fastcgi_param SCRIPT_FILENAME $realpath_root$fastcgi_script_name;",
            "        include fastcgi_params;",
            "    }",
            "",
            "    location ~ /\\.(?!well-known).* {",
            "        deny all;",
            "    }",
            "}",
            "",
        ]
    )


def render_for_plan(plan: DeploymentPlan) -> str:
    return render_vhost(
        domain=plan.domain_name,
        document_root=plan.document_root,
        fpm_socket=plan.fpm_socket,
    )
