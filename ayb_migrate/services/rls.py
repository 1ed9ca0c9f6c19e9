"""Row-level-security translation into AYB session variables.

Supabase policies are rewritten expression by expression. PocketBase API
rules are converted into fresh CREATE POLICY statements.
"""

import re
from typing import List, Optional

from ..models.source import PBCollection, RLSPolicy
from .typemap import quote_ident

# Order matters: the ::text cast form must be rewritten before the bare call.
SUPABASE_RLS_REPLACEMENTS = [
    (re.compile(r"\(\b(?:auth\.)?uid\(\)\)::text"), "current_setting('ayb.user_id', true)"),
    (re.compile(r"\b(?:auth\.)?uid\(\)"), "current_setting('ayb.user_id', true)::uuid"),
    (re.compile(r"\b(?:auth\.)?role\(\)"), "current_setting('ayb.user_role', true)"),
    (re.compile(r"\b(?:auth\.)?jwt\(\)\s*->>\s*'email'"), "current_setting('ayb.user_email', true)"),
]

PB_STRING_LITERAL = re.compile(r'"((?:[^"\\]|\\.)*)"')
PB_AUTH_FIELD = re.compile(r"@request\.auth\.(\w+)")
PB_COLLECTION_FIELD = re.compile(r"@collection\.(\w+)\.(\w+)")

# action -> (command, clause)
PB_POLICY_COMMANDS = {
    "list": ("SELECT", "USING"),
    "view": ("SELECT", "USING"),
    "create": ("INSERT", "WITH CHECK"),
    "update": ("UPDATE", "USING"),
    "delete": ("DELETE", "USING"),
}


def rewrite_rls_expression(expr: str) -> str:
    """Replace Supabase auth helpers with AYB session settings."""
    if not expr:
        return expr
    for pattern, replacement in SUPABASE_RLS_REPLACEMENTS:
        expr = pattern.sub(replacement, expr)
    return expr


def drop_policy_sql(policy: RLSPolicy) -> str:
    return (
        f"DROP POLICY IF EXISTS {quote_ident(policy.policy_name)} ON "
        f"{quote_ident(policy.schema_name)}.{quote_ident(policy.table_name)}"
    )


def enable_rls_on_policy_table_sql(policy: RLSPolicy) -> str:
    return (
        f"ALTER TABLE {quote_ident(policy.schema_name)}.{quote_ident(policy.table_name)} "
        f"ENABLE ROW LEVEL SECURITY"
    )


def generate_rewritten_policy(policy: RLSPolicy) -> str:
    """Build CREATE POLICY for a Supabase policy with auth references rewritten."""
    permissive = "PERMISSIVE" if policy.permissive else "RESTRICTIVE"
    sql = (
        f"CREATE POLICY {quote_ident(policy.policy_name)} ON "
        f"{quote_ident(policy.schema_name)}.{quote_ident(policy.table_name)} "
        f"AS {permissive} FOR {policy.command}"
    )
    if policy.using_expr:
        sql += f" USING ({rewrite_rls_expression(policy.using_expr)})"
    if policy.check_expr:
        sql += f" WITH CHECK ({rewrite_rls_expression(policy.check_expr)})"
    return sql + ";"


# PocketBase

def convert_rule_expression(rule: str) -> str:
    """Translate PocketBase filter syntax into a SQL boolean expression."""
    # PocketBase accepts "..." string literals; SQL only accepts '...'
    rule = PB_STRING_LITERAL.sub(lambda m: "'" + m.group(1).replace("'", "''") + "'", rule)
    rule = rule.replace("@request.auth.id", "current_setting('app.user_id', true)")
    rule = PB_AUTH_FIELD.sub(
        lambda m: f"(SELECT {m.group(1)} FROM ayb_auth_users WHERE id = current_setting('app.user_id', true))",
        rule,
    )
    rule = PB_COLLECTION_FIELD.sub(
        lambda m: f"(SELECT {m.group(2)} FROM {m.group(1)} WHERE id = current_setting('app.user_id', true))",
        rule,
    )
    rule = rule.replace("&&", "AND")
    rule = rule.replace("||", "OR")
    rule = rule.replace("!=", "<>")
    return rule


def build_rls_policy(table_name: str, action: str, expression: str) -> str:
    command, clause = PB_POLICY_COMMANDS.get(action.lower(), ("ALL", "USING"))
    policy_name = quote_ident(f"{table_name}_{action.lower()}_policy")
    return f"CREATE POLICY {policy_name} ON {quote_ident(table_name)} FOR {command} {clause} ({expression});"


def convert_rule_to_rls(table_name: str, action: str, rule: Optional[str]) -> str:
    """
    Convert one PocketBase API rule into a CREATE POLICY statement.

    Args:
        table_name: Target table
        action: list, view, create, update or delete
        rule: None means locked (admin-only), "" means open to everyone

    Returns:
        The statement, or an empty string when no policy is needed
    """
    if rule is None:
        return ""
    if rule == "":
        return build_rls_policy(table_name, action, "true")
    return build_rls_policy(table_name, action, convert_rule_expression(rule))


def generate_rls_policies(collection: PBCollection) -> List[str]:
    """
    Build every policy for a collection.

    listRule drives SELECT; viewRule also maps to SELECT in Postgres, so
    only the list rule is used.
    """
    rules = [
        ("list", collection.list_rule),
        ("create", collection.create_rule),
        ("update", collection.update_rule),
        ("delete", collection.delete_rule),
    ]
    policies = []
    for action, rule in rules:
        policy = convert_rule_to_rls(collection.name, action, rule)
        if policy:
            policies.append(policy)
    return policies


def count_policies(collection: PBCollection) -> int:
    """Number of policies generate_rls_policies() will emit."""
    rules = (collection.list_rule, collection.create_rule, collection.update_rule, collection.delete_rule)
    return sum(1 for rule in rules if rule is not None)


def enable_rls_sql(table_name: str) -> str:
    return f"ALTER TABLE {quote_ident(table_name)} ENABLE ROW LEVEL SECURITY;"
