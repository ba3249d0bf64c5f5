# provisioner/elevated.py
# -*- coding: utf-8 -*-
"""
Elevated invocation wrappers.

A wrapper is a PowerShell script that registers a one-shot scheduled task
running a command as another identity, starts it, relays the task output,
and exits with the task result. Running the wrapper is therefore the same
as running the wrapped command elevated, exit status included.
"""

import uuid
from dataclasses import dataclass
from xml.sax.saxutils import escape as xml_escape

from provisioner.command_encoder import escape_powershell_string

# Scheduled task logon types (TASK_LOGON_TYPE).
TASK_LOGON_PASSWORD = 1
TASK_LOGON_SERVICE_ACCOUNT = 5

ELEVATED_TEMPLATE = """\
$name = {task_name_ps}
$log = [System.Environment]::ExpandEnvironmentVariables("%SYSTEMROOT%\\Temp\\$name.out")
$s = New-Object -ComObject 'Schedule.Service'
$s.Connect()
$t = $s.NewTask($null)
$xml = [xml]@'
<?xml version="1.0" encoding="UTF-16"?>
<Task version="1.2" xmlns="http://schemas.microsoft.com/windows/2004/02/mit/task">
  <RegistrationInfo>
    <Description>{task_description_xml}</Description>
  </RegistrationInfo>
  <Principals>
    <Principal id="Author">
      <UserId>{username_xml}</UserId>
      <LogonType>{logon_type_xml}</LogonType>
      <RunLevel>HighestAvailable</RunLevel>
    </Principal>
  </Principals>
  <Settings>
    <MultipleInstancesPolicy>IgnoreNew</MultipleInstancesPolicy>
    <DisallowStartIfOnBatteries>false</DisallowStartIfOnBatteries>
    <StopIfGoingOnBatteries>false</StopIfGoingOnBatteries>
    <AllowHardTerminate>true</AllowHardTerminate>
    <StartWhenAvailable>false</StartWhenAvailable>
    <RunOnlyIfNetworkAvailable>false</RunOnlyIfNetworkAvailable>
    <IdleSettings>
      <StopOnIdleEnd>false</StopOnIdleEnd>
      <RestartOnIdle>false</RestartOnIdle>
    </IdleSettings>
    <AllowStartOnDemand>true</AllowStartOnDemand>
    <Enabled>true</Enabled>
    <Hidden>false</Hidden>
    <RunOnlyIfIdle>false</RunOnlyIfIdle>
    <WakeToRun>false</WakeToRun>
    <ExecutionTimeLimit>PT0S</ExecutionTimeLimit>
    <Priority>4</Priority>
  </Settings>
  <Actions Context="Author">
    <Exec>
      <Command>cmd</Command>
      <Arguments>/c {command_xml} &gt; %SYSTEMROOT%\\Temp\\{task_name_xml}.out 2&gt;&amp;1</Arguments>
    </Exec>
  </Actions>
</Task>
'@
$t.XmlText = $xml.OuterXml
$f = $s.GetFolder('\\')
$f.RegisterTaskDefinition($name, $t, 6, {username_ps}, {password_ps}, {logon_type}, $null) | Out-Null
$t = $f.GetTask("\\$name")
$t.Run($null) | Out-Null
$timeout = 10
$sec = 0
while ((!($t.State -eq 4)) -and ($sec -lt $timeout)) {{
  Start-Sleep -s 1
  $sec++
}}
$line = 0
do {{
  Start-Sleep -m 100
  if (Test-Path $log) {{
    Get-Content $log | Select-Object -Skip $line | ForEach-Object {{
      $line += 1
      Write-Output $_
    }}
  }}
}} while (!($t.State -eq 3))
$result = $t.LastTaskResult
if (Test-Path $log) {{
  Remove-Item $log -Force -ErrorAction SilentlyContinue | Out-Null
}}
$f.DeleteTask($name, 0)
[System.Runtime.Interopservices.Marshal]::ReleaseComObject($s) | Out-Null
exit $result
"""


@dataclass(frozen=True)
class ElevatedOptions:
    username: str
    password: str
    task_name: str
    task_description: str
    command: str


def new_task_name(prefix: str) -> str:
    """Unique, time ordered scheduled task name."""
    return f"{prefix}-{uuid.uuid1()}"


def render_elevated_script(options: ElevatedOptions) -> str:
    """
    Render the wrapper script for `options`.

    Without a password the task is registered as a service account logon,
    which is what the built-in SYSTEM identity requires.
    """
    if options.password:
        logon_type = TASK_LOGON_PASSWORD
        logon_type_xml = "Password"
        password_ps = escape_powershell_string(options.password)
    else:
        logon_type = TASK_LOGON_SERVICE_ACCOUNT
        logon_type_xml = "ServiceAccount"
        password_ps = "$null"

    return ELEVATED_TEMPLATE.format(
        task_name_ps=escape_powershell_string(options.task_name),
        task_name_xml=xml_escape(options.task_name),
        task_description_xml=xml_escape(options.task_description),
        username_xml=xml_escape(options.username),
        username_ps=escape_powershell_string(options.username),
        password_ps=password_ps,
        logon_type=logon_type,
        logon_type_xml=logon_type_xml,
        command_xml=xml_escape(options.command),
    )
