"""001 – Payroll schema: employee master, inputs, payroll pipeline tables.

Creates the read-only input tables (locations, departments, employees,
sessions, leave, attendance, expense claims), the shared audit trail, and
the payroll pipeline: salary structures, tax records, payrolls, payroll
cycles and salary disbursements.

Revision ID: 001_payroll_schema
Revises:
Create Date: 2026-03-02 10:00:00.000000+05:30
"""

import re

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_payroll_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("employment_status", ["active", "notice_period", "relieved", "absconding"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled", "revoked"]),
    (
        "attendance_status",
        [
            "present",
            "absent",
            "half_day",
            "weekend",
            "holiday",
            "on_leave",
            "work_from_home",
            "on_duty",
        ],
    ),
]

_SAFE_IDENT_RE = re.compile(r'^[a-z_][a-z0-9_]*$')


def _validate_identifier(name: str) -> str:
    if not _SAFE_IDENT_RE.match(name):
        raise ValueError(f"Unsafe SQL identifier: {name!r}")
    return name


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {_validate_identifier(name)} AS ENUM ({vals})")


def _safe_drop_table(name: str) -> None:
    _validate_identifier(name)
    op.execute(sa.text(f'DROP TABLE IF EXISTS "{name}" CASCADE'))


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ══════════════════════════════════════════════════════════════════
    # 1. Employee master (read-only input)
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE locations (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(100) NOT NULL UNIQUE,
            address     TEXT,
            city        VARCHAR(100),
            state       VARCHAR(100),
            pincode     VARCHAR(10),
            country     VARCHAR(100) DEFAULT 'India',
            timezone    VARCHAR(50) DEFAULT 'Asia/Kolkata',
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE departments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL,
            code        VARCHAR(20) UNIQUE,
            description TEXT,
            location_id UUID REFERENCES locations(id),
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_dept_name_location UNIQUE (name, location_id)
        )
    """)
    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code        VARCHAR(20) NOT NULL UNIQUE,
            first_name           VARCHAR(100) NOT NULL,
            middle_name          VARCHAR(100),
            last_name            VARCHAR(100) NOT NULL,
            display_name         VARCHAR(255),
            email                VARCHAR(255) NOT NULL UNIQUE,
            phone                VARCHAR(20),
            department_id        UUID REFERENCES departments(id),
            location_id          UUID REFERENCES locations(id),
            designation          VARCHAR(150),
            reporting_manager_id UUID REFERENCES employees(id),
            employment_status    employment_status DEFAULT 'active',
            date_of_joining      DATE NOT NULL,
            last_working_date    DATE,
            date_of_exit         DATE,
            pan_number           VARCHAR(10),
            uan_number           VARCHAR(12),
            esi_number           VARCHAR(17),
            bank_details         JSONB,
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_department ON employees(department_id)")
    op.execute("CREATE INDEX idx_employees_active ON employees(is_active)")

    op.execute("""
        CREATE TABLE user_sessions (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            token_hash  VARCHAR(512) NOT NULL,
            role        VARCHAR(30),
            ip_address  INET,
            user_agent  TEXT,
            expires_at  TIMESTAMPTZ NOT NULL,
            is_revoked  BOOLEAN DEFAULT FALSE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_sessions_token ON user_sessions(token_hash)")

    # ══════════════════════════════════════════════════════════════════
    # 2. Leave / attendance / expenses (read-only input)
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE leave_types (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code        VARCHAR(10) NOT NULL UNIQUE,
            name        VARCHAR(100) NOT NULL,
            is_paid     BOOLEAN DEFAULT TRUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_requests (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id   UUID NOT NULL REFERENCES employees(id),
            leave_type_id UUID NOT NULL REFERENCES leave_types(id),
            start_date    DATE NOT NULL,
            end_date      DATE NOT NULL,
            day_details   JSONB,
            total_days    NUMERIC(5,1) NOT NULL,
            status        leave_status DEFAULT 'pending',
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX idx_leave_requests_emp_dates ON leave_requests(employee_id, start_date, end_date)"
    )
    op.execute("""
        CREATE TABLE attendance_records (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id        UUID NOT NULL REFERENCES employees(id),
            date               DATE NOT NULL,
            status             attendance_status NOT NULL DEFAULT 'absent',
            total_work_minutes INTEGER,
            overtime_minutes   INTEGER DEFAULT 0,
            is_regularized     BOOLEAN DEFAULT FALSE,
            source             VARCHAR(50) DEFAULT 'system',
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_attendance_emp_date UNIQUE (employee_id, date)
        )
    """)
    op.execute("CREATE INDEX idx_attendance_date ON attendance_records(date)")

    # ══════════════════════════════════════════════════════════════════
    # 3. Audit trail and notifications
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id    UUID REFERENCES employees(id),
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            ip_address  INET,
            user_agent  TEXT,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail(action)")

    op.execute("""
        CREATE TABLE notifications (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type         VARCHAR(30) NOT NULL DEFAULT 'info',
            title        VARCHAR(200) NOT NULL,
            message      TEXT NOT NULL,
            action_url   VARCHAR(500),
            entity_type  VARCHAR(50),
            entity_id    UUID,
            is_read      BOOLEAN NOT NULL DEFAULT FALSE,
            read_at      TIMESTAMPTZ,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX idx_notifications_unread ON notifications(recipient_id) WHERE is_read = FALSE"
    )

    # ══════════════════════════════════════════════════════════════════
    # 4. salary_structures
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE salary_structures (
            id                        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id               UUID NOT NULL REFERENCES employees(id),
            effective_date            DATE NOT NULL,
            end_date                  DATE,
            version                   INTEGER NOT NULL DEFAULT 1,
            ctc                       NUMERIC(14,2) NOT NULL,
            basic_salary              NUMERIC(12,2) NOT NULL,
            hra_is_percentage         BOOLEAN DEFAULT TRUE,
            hra_percentage            NUMERIC(5,2) DEFAULT 40,
            hra_amount                NUMERIC(12,2) NOT NULL DEFAULT 0,
            special_allowance         NUMERIC(12,2) NOT NULL DEFAULT 0,
            transport_allowance       NUMERIC(12,2) NOT NULL DEFAULT 1600,
            medical_allowance         NUMERIC(12,2) NOT NULL DEFAULT 1250,
            lunch_allowance           NUMERIC(12,2) NOT NULL DEFAULT 0,
            phone_allowance           NUMERIC(12,2) NOT NULL DEFAULT 0,
            internet_allowance        NUMERIC(12,2) NOT NULL DEFAULT 0,
            performance_bonus         NUMERIC(12,2) NOT NULL DEFAULT 0,
            incentives                NUMERIC(12,2) NOT NULL DEFAULT 0,
            overtime_pay              NUMERIC(12,2) NOT NULL DEFAULT 0,
            arrears                   NUMERIC(12,2) NOT NULL DEFAULT 0,
            custom_earnings           JSONB DEFAULT '[]',
            pf_is_percentage          BOOLEAN DEFAULT TRUE,
            pf_percentage             NUMERIC(5,2) DEFAULT 12,
            pf_employee_contribution  NUMERIC(12,2) NOT NULL DEFAULT 0,
            pf_employer_contribution  NUMERIC(12,2) NOT NULL DEFAULT 0,
            esi_is_percentage         BOOLEAN DEFAULT TRUE,
            esi_employee_percentage   NUMERIC(5,2) DEFAULT 0.75,
            esi_employer_percentage   NUMERIC(5,2) DEFAULT 3.25,
            esi_employee_contribution NUMERIC(12,2) NOT NULL DEFAULT 0,
            esi_employer_contribution NUMERIC(12,2) NOT NULL DEFAULT 0,
            professional_tax          NUMERIC(12,2) NOT NULL DEFAULT 0,
            income_tax                NUMERIC(12,2) NOT NULL DEFAULT 0,
            loan_deduction            NUMERIC(12,2) NOT NULL DEFAULT 0,
            advance_deduction         NUMERIC(12,2) NOT NULL DEFAULT 0,
            late_coming_fine          NUMERIC(12,2) NOT NULL DEFAULT 0,
            custom_deductions         JSONB DEFAULT '[]',
            calculation_rules         JSONB DEFAULT '{}',
            gross_salary              NUMERIC(12,2) NOT NULL DEFAULT 0,
            total_deductions          NUMERIC(12,2) NOT NULL DEFAULT 0,
            net_salary                NUMERIC(12,2) NOT NULL DEFAULT 0,
            status                    VARCHAR(30) NOT NULL DEFAULT 'draft',
            approved_by_id            UUID REFERENCES employees(id),
            approved_at               TIMESTAMPTZ,
            remarks                   TEXT,
            created_by_id             UUID REFERENCES employees(id),
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_salary_structures_employee_effective "
        "ON salary_structures(employee_id, effective_date)"
    )
    op.execute("CREATE INDEX ix_salary_structures_status ON salary_structures(status)")

    # ══════════════════════════════════════════════════════════════════
    # 5. payrolls + approval steps
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE payrolls (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            payroll_code         VARCHAR(50) NOT NULL UNIQUE,
            employee_id          UUID NOT NULL REFERENCES employees(id),
            month                SMALLINT NOT NULL CHECK (month BETWEEN 1 AND 12),
            year                 SMALLINT NOT NULL,
            pay_period_start     DATE NOT NULL,
            pay_period_end       DATE NOT NULL,
            working_days         INTEGER NOT NULL DEFAULT 0,
            actual_working_days  NUMERIC(5,1) DEFAULT 0,
            structure_id         UUID REFERENCES salary_structures(id),
            structure_snapshot   JSONB,
            earnings             JSONB DEFAULT '{}',
            statutory_deductions JSONB DEFAULT '{}',
            other_deductions     JSONB DEFAULT '{}',
            adjustments          JSONB DEFAULT '{}',
            processing_rules     JSONB DEFAULT '{}',
            attendance_data      JSONB DEFAULT '{}',
            compliance           JSONB DEFAULT '{}',
            gross_pay            NUMERIC(12,2) NOT NULL DEFAULT 0,
            total_deductions     NUMERIC(12,2) NOT NULL DEFAULT 0,
            net_pay              NUMERIC(12,2) NOT NULL DEFAULT 0,
            payment_status       VARCHAR(30),
            transaction_id       VARCHAR(100),
            utr_number           VARCHAR(50),
            payment_date         TIMESTAMPTZ,
            payslip_path         VARCHAR(500),
            payslip_generated_at TIMESTAMPTZ,
            status               VARCHAR(30) NOT NULL DEFAULT 'draft',
            calculated_at        TIMESTAMPTZ,
            approved_by_id       UUID REFERENCES employees(id),
            approved_at          TIMESTAMPTZ,
            processed_by_id      UUID REFERENCES employees(id),
            processed_at         TIMESTAMPTZ,
            paid_at              TIMESTAMPTZ,
            cancelled_by_id      UUID REFERENCES employees(id),
            cancelled_at         TIMESTAMPTZ,
            cancellation_reason  TEXT,
            created_by_id        UUID REFERENCES employees(id),
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW(),
            version_id           INTEGER NOT NULL,
            CONSTRAINT uq_payroll_employee_period UNIQUE (employee_id, month, year)
        )
    """)
    op.execute("CREATE INDEX ix_payrolls_period_status ON payrolls(year, month, status)")
    op.execute("""
        CREATE TABLE payroll_approval_steps (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            payroll_id    UUID NOT NULL REFERENCES payrolls(id) ON DELETE CASCADE,
            level         INTEGER NOT NULL,
            approver_role VARCHAR(30) NOT NULL,
            approver_id   UUID REFERENCES employees(id),
            status        VARCHAR(20) NOT NULL DEFAULT 'pending',
            action_at     TIMESTAMPTZ,
            comments      TEXT,
            CONSTRAINT uq_payroll_approval_level UNIQUE (payroll_id, level)
        )
    """)

    # ══════════════════════════════════════════════════════════════════
    # 6. expense_claims (reimbursements reserved against a payroll)
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE expense_claims (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id     UUID NOT NULL REFERENCES employees(id),
            claim_number    VARCHAR(50),
            title           VARCHAR(500) NOT NULL,
            amount          NUMERIC(12,2) NOT NULL DEFAULT 0,
            approval_status VARCHAR(50) NOT NULL DEFAULT 'pending',
            payment_status  VARCHAR(50),
            submitted_date  DATE,
            approved_by_id  UUID REFERENCES employees(id),
            approved_at     TIMESTAMPTZ,
            payroll_id      UUID REFERENCES payrolls(id),
            paid_at         TIMESTAMPTZ,
            remarks         TEXT,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX idx_expense_claims_unpaid ON expense_claims(employee_id) "
        "WHERE approval_status = 'approved' AND payment_status IS NULL"
    )

    # ══════════════════════════════════════════════════════════════════
    # 7. tax_records + proofs + monthly TDS
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE tax_records (
            id                        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tax_code                  VARCHAR(50) NOT NULL UNIQUE,
            employee_id               UUID NOT NULL REFERENCES employees(id),
            fy_start_year             SMALLINT NOT NULL,
            fy_start                  DATE NOT NULL,
            fy_end                    DATE NOT NULL,
            tax_regime                VARCHAR(10) NOT NULL DEFAULT 'new',
            annual_salary             JSONB DEFAULT '{}',
            gross_annual_salary       NUMERIC(14,2) NOT NULL DEFAULT 0,
            declarations              JSONB DEFAULT '{}',
            total_declared_deductions NUMERIC(14,2) NOT NULL DEFAULT 0,
            hra_exemption             NUMERIC(14,2) NOT NULL DEFAULT 0,
            tax_calculation           JSONB DEFAULT '{}',
            taxable_income            NUMERIC(14,2) NOT NULL DEFAULT 0,
            applicable_tax            NUMERIC(14,2) NOT NULL DEFAULT 0,
            cess                      NUMERIC(14,2) NOT NULL DEFAULT 0,
            total_tax_liability       NUMERIC(14,2) NOT NULL DEFAULT 0,
            monthly_tds               NUMERIC(14,2) NOT NULL DEFAULT 0,
            calculated_at             TIMESTAMPTZ,
            form16_path               VARCHAR(500),
            form16_generated_at       TIMESTAMPTZ,
            status                    VARCHAR(20) NOT NULL DEFAULT 'draft',
            submitted_at              TIMESTAMPTZ,
            reviewed_by_id            UUID REFERENCES employees(id),
            reviewed_at               TIMESTAMPTZ,
            approved_by_id            UUID REFERENCES employees(id),
            approved_at               TIMESTAMPTZ,
            comments                  TEXT,
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_tax_record_employee_fy UNIQUE (employee_id, fy_start_year)
        )
    """)
    op.execute("""
        CREATE TABLE tax_investment_proofs (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tax_record_id  UUID NOT NULL REFERENCES tax_records(id) ON DELETE CASCADE,
            section        VARCHAR(20) NOT NULL,
            description    VARCHAR(200) NOT NULL,
            amount         NUMERIC(12,2) NOT NULL,
            document_path  VARCHAR(500),
            status         VARCHAR(20) NOT NULL DEFAULT 'pending',
            verified_by_id UUID REFERENCES employees(id),
            verified_at    TIMESTAMPTZ,
            remarks        TEXT,
            created_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE tax_monthly_tds (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tax_record_id     UUID NOT NULL REFERENCES tax_records(id) ON DELETE CASCADE,
            payroll_id        UUID,
            month             SMALLINT NOT NULL,
            year              SMALLINT NOT NULL,
            gross_income      NUMERIC(12,2) NOT NULL DEFAULT 0,
            tds_amount        NUMERIC(12,2) NOT NULL DEFAULT 0,
            cumulative_income NUMERIC(14,2) NOT NULL DEFAULT 0,
            cumulative_tds    NUMERIC(14,2) NOT NULL DEFAULT 0,
            posted_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_tax_monthly_tds_period UNIQUE (tax_record_id, month, year)
        )
    """)

    # ══════════════════════════════════════════════════════════════════
    # 8. payroll_cycles + processing errors + approval steps
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE payroll_cycles (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            cycle_code           VARCHAR(20) NOT NULL UNIQUE,
            month                SMALLINT NOT NULL CHECK (month BETWEEN 1 AND 12),
            year                 SMALLINT NOT NULL,
            start_date           DATE NOT NULL,
            end_date             DATE NOT NULL,
            status               VARCHAR(30) NOT NULL DEFAULT 'draft',
            attendance_locked_at TIMESTAMPTZ,
            calculated_at        TIMESTAMPTZ,
            reviewed_at          TIMESTAMPTZ,
            approved_at          TIMESTAMPTZ,
            processed_at         TIMESTAMPTZ,
            disbursed_at         TIMESTAMPTZ,
            completed_at         TIMESTAMPTZ,
            summary              JSONB DEFAULT '{}',
            processing_rules     JSONB DEFAULT '{}',
            batch_id             VARCHAR(50),
            created_by_id        UUID REFERENCES employees(id),
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_payroll_cycle_period UNIQUE (month, year)
        )
    """)
    op.execute("""
        CREATE TABLE payroll_processing_errors (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            cycle_id       UUID NOT NULL REFERENCES payroll_cycles(id) ON DELETE CASCADE,
            employee_id    UUID NOT NULL REFERENCES employees(id),
            error_type     VARCHAR(30) NOT NULL,
            message        TEXT NOT NULL,
            is_resolved    BOOLEAN NOT NULL DEFAULT FALSE,
            resolved_at    TIMESTAMPTZ,
            resolved_by_id UUID REFERENCES employees(id),
            created_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX idx_processing_errors_open ON payroll_processing_errors(cycle_id) "
        "WHERE is_resolved = FALSE"
    )
    op.execute("""
        CREATE TABLE payroll_cycle_approval_steps (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            cycle_id      UUID NOT NULL REFERENCES payroll_cycles(id) ON DELETE CASCADE,
            level         INTEGER NOT NULL,
            approver_role VARCHAR(30) NOT NULL,
            approver_id   UUID REFERENCES employees(id),
            status        VARCHAR(20) NOT NULL DEFAULT 'pending',
            action_at     TIMESTAMPTZ,
            remarks       TEXT,
            CONSTRAINT uq_cycle_approval_level UNIQUE (cycle_id, level)
        )
    """)

    # ══════════════════════════════════════════════════════════════════
    # 9. salary_disbursements + status history
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE salary_disbursements (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            disbursement_code VARCHAR(50) NOT NULL UNIQUE,
            batch_id          VARCHAR(50),
            payroll_id        UUID NOT NULL REFERENCES payrolls(id),
            employee_id       UUID NOT NULL REFERENCES employees(id),
            month             SMALLINT NOT NULL,
            year              SMALLINT NOT NULL,
            pay_period_start  DATE,
            pay_period_end    DATE,
            gross_amount      NUMERIC(12,2) NOT NULL DEFAULT 0,
            total_deductions  NUMERIC(12,2) NOT NULL DEFAULT 0,
            net_amount        NUMERIC(12,2) NOT NULL DEFAULT 0,
            bank_account      JSONB DEFAULT '{}',
            payment_method    VARCHAR(20) NOT NULL DEFAULT 'neft',
            gateway_provider  VARCHAR(30) NOT NULL DEFAULT 'manual',
            payout_id         VARCHAR(100),
            status            VARCHAR(20) NOT NULL DEFAULT 'pending',
            transaction_id    VARCHAR(100),
            utr_number        VARCHAR(50),
            reference_number  VARCHAR(100),
            transaction_date  TIMESTAMPTZ,
            failure_reason    TEXT,
            failure_code      VARCHAR(50),
            gateway_response  JSONB,
            retry_count       INTEGER NOT NULL DEFAULT 0,
            max_retries       INTEGER NOT NULL DEFAULT 3,
            next_retry_at     TIMESTAMPTZ,
            last_retry_at     TIMESTAMPTZ,
            validated         BOOLEAN NOT NULL DEFAULT FALSE,
            validation_errors JSONB DEFAULT '[]',
            validated_at      TIMESTAMPTZ,
            initiated_by_id   UUID REFERENCES employees(id),
            initiated_at      TIMESTAMPTZ,
            processed_at      TIMESTAMPTZ,
            compliance        JSONB DEFAULT '{}',
            employee_notified BOOLEAN NOT NULL DEFAULT FALSE,
            notified_at       TIMESTAMPTZ,
            reconciled        BOOLEAN NOT NULL DEFAULT FALSE,
            reconciled_at     TIMESTAMPTZ,
            reconciled_by_id  UUID REFERENCES employees(id),
            statement_entry   JSONB,
            discrepancy       JSONB,
            created_by_id     UUID REFERENCES employees(id),
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            version_id        INTEGER NOT NULL,
            CONSTRAINT uq_disbursement_payroll UNIQUE (payroll_id),
            CONSTRAINT ck_disbursement_retry_bound CHECK (retry_count <= max_retries)
        )
    """)
    op.execute("CREATE INDEX ix_disbursements_batch ON salary_disbursements(batch_id)")
    op.execute(
        "CREATE INDEX ix_disbursements_status_retry ON salary_disbursements(status, next_retry_at)"
    )
    op.execute("""
        CREATE TABLE disbursement_status_history (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            disbursement_id UUID NOT NULL REFERENCES salary_disbursements(id) ON DELETE CASCADE,
            from_status     VARCHAR(20),
            to_status       VARCHAR(20) NOT NULL,
            changed_by_id   UUID REFERENCES employees(id),
            remarks         TEXT,
            changed_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)


def downgrade() -> None:
    # Reverse dependency order
    for table in [
        "disbursement_status_history",
        "salary_disbursements",
        "payroll_cycle_approval_steps",
        "payroll_processing_errors",
        "payroll_cycles",
        "tax_monthly_tds",
        "tax_investment_proofs",
        "tax_records",
        "expense_claims",
        "payroll_approval_steps",
        "payrolls",
        "salary_structures",
        "notifications",
        "audit_trail",
        "attendance_records",
        "leave_requests",
        "leave_types",
        "user_sessions",
        "employees",
        "departments",
        "locations",
    ]:
        _safe_drop_table(table)

    for name, _ in reversed(ENUM_TYPES):
        op.execute(f"DROP TYPE IF EXISTS {_validate_identifier(name)}")
