"""Help text for az nucleus commands."""

from knack.help_files import helps

helps["nucleus"] = """
type: group
short-summary: Validate, deploy and configure Azure infrastructure-as-code projects.
long-summary: |
    The az nucleus extension wraps the day-to-day workflow of a Bicep (or
    Terraform) project built from Azure Verified Modules.

    Workflow: init → validate → deploy → postdeploy

    Validation checks parameter files against rule sets and scripts for
    forbidden references; scanning runs Trivy, Checkov and Gitleaks.
    Every command writes a transcript to .nucleus/logs/.
"""

helps["nucleus init"] = """
type: command
short-summary: Create nucleus.yaml for a project.
long-summary: |
    Writes nucleus.yaml with project defaults and adds nucleus.secrets.yaml
    and .nucleus/ to .gitignore. Subscription IDs and service principal
    credentials set later are stored in nucleus.secrets.yaml.
examples:
    - name: Initialise a Bicep project
      text: az nucleus init --name apim-platform --location westeurope
    - name: Initialise a Terraform project for production
      text: az nucleus init --iac-tool terraform --environment prod
"""

helps["nucleus config"] = """
type: group
short-summary: Show and change project configuration.
"""

helps["nucleus config show"] = """
type: command
short-summary: Show the merged configuration with secrets masked.
"""

helps["nucleus config get"] = """
type: command
short-summary: Get a configuration value.
examples:
    - name: Read the deployment resource group
      text: az nucleus config get --key deploy.resource_group
"""

helps["nucleus config set"] = """
type: command
short-summary: Set a configuration value.
examples:
    - name: Set the deployment resource group
      text: az nucleus config set --key deploy.resource_group --value rg-apim-dev
    - name: Set the forbidden terms (JSON list)
      text: az nucleus config set --key validation.forbidden_terms --value '["contoso", "fabrikam"]'
"""

helps["nucleus params"] = """
type: group
short-summary: Inspect parameter files.
"""

helps["nucleus params show"] = """
type: command
short-summary: Parse a parameter file and print its values as JSON.
long-summary: |
    Supports .bicepparam and ARM JSON parameter files. Values that can only
    be computed by Bicep (function calls, string interpolation, Key Vault
    references) are shown as their Bicep source text.
examples:
    - name: Show the dev parameters
      text: az nucleus params show --file config/apim/parameters.dev.bicepparam
"""

helps["nucleus validate"] = """
type: group
short-summary: Static checks for templates, parameter files and scripts.
"""

helps["nucleus validate templates"] = """
type: command
short-summary: Validate templates and parameter files against rule sets.
long-summary: |
    Rule sets are YAML files (*.rules.yaml) that name a template, the
    per-environment parameter files and the checks each must pass.
    Findings with severity error fail the command; --strict also fails
    on warnings.
examples:
    - name: Validate with the built-in rules
      text: az nucleus validate templates
    - name: Only validate production, with project rules
      text: az nucleus validate templates --env prod --rules-dir rules
"""

helps["nucleus validate references"] = """
type: command
short-summary: Scan deployment scripts for forbidden references.
examples:
    - name: Scan ./scripts for the configured terms
      text: az nucleus validate references
    - name: Scan shell scripts for placeholder tenants
      text: az nucleus validate references --root tools --patterns "*.sh" --terms contoso fabrikam
"""

helps["nucleus validate arm"] = """
type: command
short-summary: Test a template with ARM-TTK and PSRule for Azure.
long-summary: |
    Compiles a Bicep template (and .bicepparam file) to ARM JSON, then runs
    the ARM Template Test Toolkit and PSRule for Azure through pwsh. Tools
    that are not installed are reported as skipped. Ends with the what-if
    command to preview the deployment.
examples:
    - name: Test the project template
      text: az nucleus validate arm
    - name: Test with a parameter file and a local ARM-TTK clone
      text: az nucleus validate arm --template main.bicep -p config/ms.apim/parameters.dev.bicepparam --arm-ttk-path ~/src/arm-ttk
"""

helps["nucleus validate scripts"] = """
type: command
short-summary: Run PSScriptAnalyzer and Pester against deployment scripts.
long-summary: |
    Each script is analyzed with PSScriptAnalyzer. When a <name>.Tests.ps1
    file sits beside the script its Pester tests are run as well.
examples:
    - name: Analyze ./scripts
      text: az nucleus validate scripts
    - name: Analyze a single script
      text: az nucleus validate scripts --path scripts/Deploy-Apim.ps1
"""

helps["nucleus doctor"] = """
type: command
short-summary: Check that required tools are installed at supported versions.
examples:
    - name: Check the core toolchain
      text: az nucleus doctor
    - name: Check AKS and scanner tooling too
      text: az nucleus doctor --profiles core aks scan
"""

helps["nucleus env"] = """
type: group
short-summary: Development environment setup.
"""

helps["nucleus env setup"] = """
type: command
short-summary: Apply Azure CLI defaults and show the logins still required.
long-summary: |
    Runs az configure --defaults for AZURE_DEFAULTS_GROUP and
    AZURE_DEFAULTS_LOCATION when they are set, then lists the az, gh and
    git authentication steps.
    With --install-tools it also installs the Pester, PSScriptAnalyzer and
    PSRule.Rules.Azure PowerShell modules and clones ARM-TTK.
examples:
    - name: Apply defaults and install the analysis tooling
      text: az nucleus env setup --install-tools
"""

helps["nucleus deploy"] = """
type: command
short-summary: Deploy, validate or preview the project's infrastructure.
long-summary: |
    Bicep projects run az deployment sub|group <action>; the scope follows
    the template's targetScope. The parameter file is --parameters or is
    discovered from the environment (config/**/parameters.<env>.bicepparam).

    Terraform projects run init/plan (what-if, validate) or plan/apply
    (create). Outputs of a successful create are saved to
    .nucleus/state/deployment_outputs.json for post-deployment steps.
examples:
    - name: Preview changes for dev
      text: az nucleus deploy --action what-if --env dev
    - name: Deploy production
      text: az nucleus deploy --action create --env prod -g rg-apim-prod
"""

helps["nucleus postdeploy"] = """
type: group
short-summary: Configure deployed services from a postdeploy.yaml plan.
long-summary: |
    Each step is run independently: a failure is reported and the next step
    continues unless --fail-fast is given. The command fails when any step
    failed. Use --dry-run to list the commands without running them.
"""

helps["nucleus postdeploy apim"] = """
type: command
short-summary: Configure products, APIs, policies, groups and users on API Management.
examples:
    - name: Preview the APIM configuration
      text: az nucleus postdeploy apim --env dev --dry-run
    - name: Apply it, stopping at the first failure
      text: az nucleus postdeploy apim --env dev --fail-fast
"""

helps["nucleus postdeploy aks"] = """
type: command
short-summary: Configure namespaces, Helm releases and manifests on AKS.
examples:
    - name: Apply the AKS section of a custom plan
      text: az nucleus postdeploy aks --plan deploy/postdeploy.yaml
"""

helps["nucleus scan"] = """
type: command
short-summary: Run security scanners over the project.
long-summary: |
    Runs Trivy (misconfiguration), Checkov (policy) and Gitleaks (secrets).
    Scanners that are not installed are skipped. Fails when a finding is at
    or above the threshold.
examples:
    - name: Scan with the configured scanners
      text: az nucleus scan
    - name: Only look for leaked secrets, failing on anything
      text: az nucleus scan --tools gitleaks --threshold LOW
"""
